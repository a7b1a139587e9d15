"""Queue scheduler: delayed-job promotion and stalled-job recovery.

The scheduler does the automatic bookkeeping of a queue: it moves delayed
jobs into the waiting list once they are due, and moves stalled jobs back
to waiting (or to failed, once they stalled too often).

Jobs are checked for stalledness once every stalled interval. Active jobs
are marked as stall candidates on one check; on the next, candidates whose
worker has not renewed its lock are considered stalled. Workers clear the
candidate marks of the jobs they are working on.

The scheduler needs a dedicated Redis connection, and at least one must be
running per queue at any time, otherwise delayed jobs are never promoted
and stalled jobs are never recovered.
"""

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from delayq.config.models import QueueSchedulerOptions
from delayq.errors import AlreadyRunningError, ConfigurationError, JobStalledError
from delayq.queue_base import ConnectionLike, QueueBase
from delayq.retry import (
    DELAY_TIME_5,
    RetryConfig,
    delay,
    is_connection_error,
    is_unsupported_client_command,
)
from delayq.scripts import Scripts

logger = logging.getLogger(__name__)

QUEUE_SCHEDULER_SUFFIX = ":qs"

# Cursor meaning "nothing consumed yet"
START_OF_STREAM = "0-0"

# Approximate number of entries kept in the delay stream
DELAY_STREAM_MAX_LEN = 100

# A delay stream entry: (stream id, fields)
StreamEntry = tuple[str, Mapping[str, Any]]


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_block_time(
    next_timestamp: int | None, now: int, stalled_interval: int
) -> int:
    """How long the next delay-stream read may block, in milliseconds.

    Never more than ``stalled_interval`` (so the stall sweep keeps running)
    and never negative (a job already due gets a non-blocking read).
    """
    if next_timestamp is None:
        return stalled_interval
    return round(min(stalled_interval, max(next_timestamp - now, 0)))


def apply_delay_entries(
    entries: Iterable[StreamEntry],
    cursor: str,
    next_timestamp: int | None,
) -> tuple[str, int | None]:
    """Fold a batch of delay-stream entries into (cursor, next_timestamp).

    The cursor ends at the last entry's id. The timestamp is only ever
    lowered here; raising it is up to the promotion script.
    """
    for entry_id, fields in entries:
        cursor = entry_id
        raw = fields.get("nextTimestamp")
        try:
            timestamp = int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning(
                "delay_entry_invalid",
                extra={"stream.entry_id": entry_id, "entry.next_timestamp": raw},
            )
            continue
        if next_timestamp is None or timestamp < next_timestamp:
            next_timestamp = timestamp
    return cursor, next_timestamp


def _stream_entries(data: Any, key: str) -> list[StreamEntry]:
    """Pull the entries for ``key`` out of an XREAD reply."""
    if not data:
        return []
    if isinstance(data, Mapping):
        # RESP3: {key: [[(id, fields), ...]]}
        nested = data.get(key)
        streams: Sequence[Any] = [(key, nested[0])] if nested else []
    else:
        # RESP2: [[key, [(id, fields), ...]]]
        streams = data
    for stream_key, entries in streams:
        if stream_key == key:
            return [(entry_id, fields or {}) for entry_id, fields in entries]
    return []


class QueueScheduler(QueueBase):
    """Runs the promotion / stall-recovery loop for one queue.

    Example:
        scheduler = QueueScheduler(
            "emails",
            QueueSchedulerOptions(stalled_interval=30000, autorun=False),
            connection=ConnectionOptions(url="redis://localhost:6379/0"),
        )

        @scheduler.on("stalled")
        def on_stalled(job_id: str, prev: str) -> None:
            ...

        task = asyncio.create_task(scheduler.run())
        ...
        await scheduler.close()
    """

    def __init__(
        self,
        name: str,
        opts: QueueSchedulerOptions | None = None,
        *,
        connection: ConnectionLike | None = None,
        autorun: bool | None = None,
        retry: RetryConfig | None = None,
    ):
        """Initialize the scheduler.

        With autorun (``opts.autorun`` unless ``autorun`` overrides it) the
        loop is started right away as a task on the running event loop; its
        failure is only reported through the ``error`` event.

        Raises:
            ConfigurationError: If the stalled interval is zero or unset, or
                autorun is requested outside a running event loop.
        """
        opts = opts or QueueSchedulerOptions()
        if not opts.stalled_interval:
            raise ConfigurationError("Stalled interval cannot be zero or undefined")
        self._stalled_interval: int = opts.stalled_interval

        super().__init__(name, opts, connection, retry)

        self.scripts = Scripts(self)
        self._next_timestamp: int | None = None
        self._stream_cursor = START_OF_STREAM
        self._is_blocked = False
        self._running = False
        self._stopped: asyncio.Event | None = None
        self._autorun_task: asyncio.Task[None] | None = None

        if autorun is None:
            autorun = opts.autorun
        if autorun:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise ConfigurationError(
                    "autorun requires a running event loop; "
                    "pass autorun=False and await run() instead"
                ) from None
            self._autorun_task = loop.create_task(self._autorun())

    @property
    def stalled_interval(self) -> int:
        return self._stalled_interval

    @property
    def next_timestamp(self) -> int | None:
        """Earliest known due time of a delayed job, None if none is pending."""
        return self._next_timestamp

    @property
    def stream_cursor(self) -> str:
        return self._stream_cursor

    @property
    def is_blocked(self) -> bool:
        return self._is_blocked

    def is_running(self) -> bool:
        return self._running

    async def _autorun(self) -> None:
        try:
            await self.run()
        except Exception as e:
            if not self.emit("error", e):
                logger.error(
                    "queue_scheduler_error",
                    extra={"queue.name": self.name, "error.message": str(e)},
                    exc_info=e,
                )

    async def run(self) -> None:
        """Run the loop until close() is called.

        Raises:
            AlreadyRunningError: If the loop is already running.
            Exception: Whatever unclassified error stopped the loop.
        """
        if self._running:
            raise AlreadyRunningError()
        if self.closing:
            logger.debug("queue_scheduler_closed", extra={"queue.name": self.name})
            return

        self._running = True
        self._stopped = asyncio.Event()
        try:
            client = await self.wait_until_ready()
            await self._set_client_name(client)

            next_timestamp, cursor = await self._update_delay_set(now_ms())
            self._stream_cursor = cursor or START_OF_STREAM
            if next_timestamp:
                self._next_timestamp = next_timestamp

            logger.info(
                "queue_scheduler_started",
                extra={
                    "queue.name": self.name,
                    "scheduler.stalled_interval": self.stalled_interval,
                    "stream.cursor": self._stream_cursor,
                },
            )

            while not self.closing:
                await self._move_stalled_jobs_to_wait()

                block_time = compute_block_time(
                    self._next_timestamp, now_ms(), self.stalled_interval
                )
                entries = await self._read_delayed_data(client, block_time)

                if entries:
                    self._stream_cursor, self._next_timestamp = apply_delay_entries(
                        entries, self._stream_cursor, self._next_timestamp
                    )
                    logger.debug(
                        "delay_entries_applied",
                        extra={
                            "queue.name": self.name,
                            "stream.entries": len(entries),
                            "stream.cursor": self._stream_cursor,
                            "scheduler.next_timestamp": self._next_timestamp,
                        },
                    )
                    if not self.closing:
                        await self._trim_delay_stream(client)

                now = now_ms()
                if self._next_timestamp is not None and self._next_timestamp <= now:
                    next_timestamp, cursor = await self._update_delay_set(now)
                    if next_timestamp:
                        self._next_timestamp = next_timestamp
                        if cursor:
                            self._stream_cursor = cursor
                    else:
                        self._next_timestamp = None
        finally:
            self._running = False
            self._stopped.set()

        logger.info("queue_scheduler_stopped", extra={"queue.name": self.name})

    start = run

    async def _set_client_name(self, client: Redis) -> None:
        try:
            await client.client_setname(self.client_name(QUEUE_SCHEDULER_SUFFIX))
        except Exception as e:
            if not is_unsupported_client_command(e):
                raise
            logger.debug("client_setname_unsupported", extra={"queue.name": self.name})

    async def _read_delayed_data(
        self, client: Redis, block_time: int
    ) -> list[StreamEntry]:
        if self.closing:
            return []

        key = self.keys.delay
        if block_time > 0:
            try:
                self._is_blocked = True
                data = await client.xread({key: self._stream_cursor}, block=block_time)
            except Exception as e:
                if not is_connection_error(e):
                    raise
                # Expected while closing or when the server drops us
                logger.debug(
                    "delay_read_connection_lost",
                    extra={"queue.name": self.name, "error.message": str(e)},
                )
                await delay(DELAY_TIME_5)
                return []
            finally:
                self._is_blocked = False
        else:
            data = await self.check_connection_error(
                lambda: client.xread({key: self._stream_cursor}), "xread"
            )

        return _stream_entries(data, key)

    async def _trim_delay_stream(self, client: Redis) -> None:
        # 100 entries is plenty for any reader to catch up from
        try:
            await self.check_connection_error(
                lambda: client.xtrim(
                    self.keys.delay, maxlen=DELAY_STREAM_MAX_LEN, approximate=True
                ),
                "xtrim",
            )
        except RedisError as e:
            logger.warning(
                "delay_stream_trim_failed",
                extra={"queue.name": self.name, "error.message": str(e)},
            )

    async def _update_delay_set(self, timestamp: int) -> tuple[int | None, str | None]:
        if self.closing:
            return None, None
        return await self.check_connection_error(
            lambda: self.scripts.update_delay_set(timestamp), "update_delay_set"
        )

    async def _move_stalled_jobs_to_wait(self) -> None:
        if self.closing:
            return

        # Only the script call is guarded; listener errors propagate as raised
        failed, stalled = await self.check_connection_error(
            lambda: self.scripts.move_stalled_jobs_to_wait(now_ms()),
            "move_stalled_jobs_to_wait",
        )

        for job_id in failed:
            logger.info(
                "job_stalled_limit_exceeded",
                extra={"queue.name": self.name, "job.id": job_id},
            )
            self.emit("failed", job_id, JobStalledError(), "active")
        for job_id in stalled:
            logger.info(
                "job_stalled", extra={"queue.name": self.name, "job.id": job_id}
            )
            self.emit("stalled", job_id, "active")

    def close(self) -> asyncio.Task[None]:
        """Stop the loop after its current iteration and close the connection.

        If a blocking read is in flight the connection is dropped right away
        instead of waiting out the block. Repeated calls return the same task.
        """
        if self._closing is None:
            if self._is_blocked:
                self._closing = asyncio.ensure_future(self._force_close())
            else:
                self._closing = asyncio.ensure_future(self._graceful_close())
        return self._closing

    async def _wait_stopped(self) -> None:
        if self._running and self._stopped is not None:
            await self._stopped.wait()

    async def _force_close(self) -> None:
        logger.debug("queue_scheduler_disconnecting", extra={"queue.name": self.name})
        await self.disconnect()
        await self._wait_stopped()

    async def _graceful_close(self) -> None:
        await self._wait_stopped()
        await self.connection.close()
