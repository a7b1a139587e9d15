"""Tests for scheduler event listeners."""

import pytest

from delayq.errors import JobStalledError
from delayq.events import SchedulerEvents


class TestSchedulerEvents:
    """Tests for SchedulerEvents."""

    def test_emit_without_listeners(self):
        events = SchedulerEvents()
        assert events.emit("stalled", "1", "active") is False

    def test_listeners_called_in_order(self):
        events = SchedulerEvents()
        calls: list[tuple[str, ...]] = []

        events.on("stalled", lambda job_id, prev: calls.append(("a", job_id, prev)))
        events.on("stalled", lambda job_id, prev: calls.append(("b", job_id, prev)))

        assert events.emit("stalled", "7", "active") is True
        assert calls == [("a", "7", "active"), ("b", "7", "active")]

    def test_on_as_decorator(self):
        events = SchedulerEvents()
        received: list[BaseException] = []

        @events.on("error")
        def handle_error(err: BaseException) -> None:
            received.append(err)

        boom = RuntimeError("boom")
        events.emit("error", boom)
        assert received == [boom]
        assert events.listener_count("error") == 1

    def test_failed_listener_arguments(self):
        events = SchedulerEvents()
        received = []

        events.on("failed", lambda *args: received.append(args))
        events.emit("failed", "3", JobStalledError(), "active")

        job_id, reason, prev = received[0]
        assert job_id == "3"
        assert str(reason) == "job stalled more than allowable limit"
        assert prev == "active"

    def test_once_called_once(self):
        events = SchedulerEvents()
        calls: list[str] = []

        events.once("stalled", lambda job_id, prev: calls.append(job_id))
        events.emit("stalled", "1", "active")
        events.emit("stalled", "2", "active")

        assert calls == ["1"]
        assert events.listener_count("stalled") == 0

    def test_off_removes_listener(self):
        events = SchedulerEvents()
        calls: list[str] = []

        def listener(job_id: str, prev: str) -> None:
            calls.append(job_id)

        events.on("stalled", listener)
        events.off("stalled", listener)
        events.emit("stalled", "1", "active")

        assert calls == []

    def test_off_removes_once_listener(self):
        events = SchedulerEvents()
        calls: list[str] = []

        def listener(job_id: str, prev: str) -> None:
            calls.append(job_id)

        events.once("stalled", listener)
        events.off("stalled", listener)

        assert events.emit("stalled", "1", "active") is False
        assert calls == []

    def test_off_unknown_listener_is_noop(self):
        events = SchedulerEvents()
        events.on("stalled", lambda job_id, prev: None)
        events.off("stalled", lambda job_id, prev: None)
        assert events.listener_count("stalled") == 1

    def test_listener_exception_propagates(self):
        events = SchedulerEvents()

        def broken(err: BaseException) -> None:
            raise ValueError("listener failed")

        events.on("error", broken)
        with pytest.raises(ValueError, match="listener failed"):
            events.emit("error", RuntimeError("boom"))

    def test_unknown_event(self):
        events = SchedulerEvents()
        with pytest.raises(ValueError, match="Unknown event"):
            events.on("completed", lambda: None)  # type: ignore[call-overload]
