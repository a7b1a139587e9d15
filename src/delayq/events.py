"""Typed listeners for scheduler events.

The scheduler emits exactly three kinds of events:
- error: an exception escaped the loop while running unattended (autorun)
- failed: a job stalled more times than allowed and was moved to failed
- stalled: a job stalled and was moved back to waiting

Example:
    scheduler = QueueScheduler("emails")

    @scheduler.on("stalled")
    def handle_stalled(job_id: str, prev: str) -> None:
        logger.info("job_stalled", extra={"job.id": job_id})
"""

from collections.abc import Callable
from typing import Any, Literal, overload

ErrorListener = Callable[[BaseException], Any]
FailedListener = Callable[[str, Exception, str], Any]
StalledListener = Callable[[str, str], Any]

EventName = Literal["error", "failed", "stalled"]

EVENT_NAMES: tuple[str, ...] = ("error", "failed", "stalled")


class SchedulerEvents:
    """Publish/subscribe for the three scheduler event kinds.

    Listeners are called synchronously in registration order. Exceptions
    raised by a listener are not caught: they propagate to whoever emitted
    the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = {
            name: [] for name in EVENT_NAMES
        }

    def _bucket(self, event: str) -> list[Callable[..., Any]]:
        try:
            return self._listeners[event]
        except KeyError:
            raise ValueError(
                f"Unknown event '{event}'. Available: {', '.join(EVENT_NAMES)}"
            ) from None

    @overload
    def on(
        self, event: Literal["error"]
    ) -> Callable[[ErrorListener], ErrorListener]: ...
    @overload
    def on(self, event: Literal["error"], listener: ErrorListener) -> ErrorListener: ...
    @overload
    def on(
        self, event: Literal["failed"]
    ) -> Callable[[FailedListener], FailedListener]: ...
    @overload
    def on(
        self, event: Literal["failed"], listener: FailedListener
    ) -> FailedListener: ...
    @overload
    def on(
        self, event: Literal["stalled"]
    ) -> Callable[[StalledListener], StalledListener]: ...
    @overload
    def on(
        self, event: Literal["stalled"], listener: StalledListener
    ) -> StalledListener: ...

    def on(self, event: str, listener: Callable[..., Any] | None = None) -> Any:
        """Register a listener. Without ``listener``, acts as a decorator."""
        bucket = self._bucket(event)
        if listener is None:

            def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                bucket.append(fn)
                return fn

            return decorator
        bucket.append(listener)
        return listener

    @overload
    def once(
        self, event: Literal["error"], listener: ErrorListener
    ) -> ErrorListener: ...
    @overload
    def once(
        self, event: Literal["failed"], listener: FailedListener
    ) -> FailedListener: ...
    @overload
    def once(
        self, event: Literal["stalled"], listener: StalledListener
    ) -> StalledListener: ...

    def once(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Register a listener that is removed after its first call."""
        bucket = self._bucket(event)

        def wrapper(*args: Any) -> Any:
            self._remove(bucket, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        bucket.append(wrapper)
        return listener

    def off(self, event: EventName, listener: Callable[..., Any]) -> None:
        """Remove the most recently added registration of ``listener``."""
        bucket = self._bucket(event)
        for i in range(len(bucket) - 1, -1, -1):
            registered = bucket[i]
            original = getattr(registered, "listener", None)
            if registered is listener or original is listener:
                del bucket[i]
                return

    def listener_count(self, event: EventName) -> int:
        return len(self._bucket(event))

    def emit(self, event: EventName, *args: Any) -> bool:
        """Call every listener for ``event``.

        Returns:
            True if the event had listeners.
        """
        bucket = self._bucket(event)
        if not bucket:
            return False
        # Copy so once-listeners can remove themselves while we iterate
        for listener in list(bucket):
            listener(*args)
        return True

    @staticmethod
    def _remove(bucket: list[Callable[..., Any]], fn: Callable[..., Any]) -> None:
        try:
            bucket.remove(fn)
        except ValueError:
            pass
