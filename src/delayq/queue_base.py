"""Shared plumbing for objects that operate on one queue."""

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from redis.asyncio import Redis

from delayq.config.models import ConnectionOptions, QueueSchedulerOptions
from delayq.connection import RedisConnection
from delayq.errors import ConfigurationError
from delayq.events import EventName, SchedulerEvents
from delayq.keys import QueueKeys
from delayq.retry import RetryConfig, with_connection_retry

logger = logging.getLogger(__name__)

ConnectionLike = ConnectionOptions | Redis | RedisConnection


class QueueBase:
    """Queue name, keys, dedicated connection and event listeners.

    A plain ``Redis`` client passed as ``connection`` is never used
    directly: a dedicated client with the same settings is created from it.
    """

    def __init__(
        self,
        name: str,
        opts: QueueSchedulerOptions,
        connection: ConnectionLike | None = None,
        retry: RetryConfig | None = None,
    ):
        if not name:
            raise ConfigurationError("Queue name must be provided")

        self.name = name
        self.opts = opts
        self.keys = QueueKeys(name, opts.prefix)
        self.retry = retry or RetryConfig()
        self.events = SchedulerEvents()

        if isinstance(connection, RedisConnection):
            self.connection = connection
        elif isinstance(connection, Redis):
            self.connection = RedisConnection.dedicated_from(connection, self.retry)
        else:
            self.connection = RedisConnection(connection, retry=self.retry)

        self._closing: asyncio.Task[None] | None = None

    # Listener registration is delegated so callers can write scheduler.on(...)
    def on(self, event: EventName, listener: Callable[..., Any] | None = None) -> Any:
        return self.events.on(event, listener)  # type: ignore[call-overload]

    def once(self, event: EventName, listener: Callable[..., Any]) -> Any:
        return self.events.once(event, listener)  # type: ignore[call-overload]

    def off(self, event: EventName, listener: Callable[..., Any]) -> None:
        self.events.off(event, listener)

    def emit(self, event: EventName, *args: Any) -> bool:
        return self.events.emit(event, *args)

    @property
    def closing(self) -> bool:
        """True once close() has been requested."""
        return self._closing is not None

    def client_name(self, suffix: str = "") -> str:
        """Name to tag our connection with, e.g. ``bull:ZW1haWxz:qs``."""
        encoded = base64.b64encode(self.name.encode()).decode()
        return f"{self.opts.prefix}:{encoded}{suffix}"

    async def wait_until_ready(self) -> Redis:
        return await self.connection.wait_until_ready()

    async def check_connection_error[T](
        self,
        func: Callable[[], Awaitable[T]],
        operation_name: str = "redis call",
    ) -> T:
        """Run a store call through the connection guard."""
        return await with_connection_retry(func, self.retry, operation_name)

    def close(self) -> asyncio.Task[None]:
        """Close the connection. Repeated calls return the same task."""
        if self._closing is None:
            self._closing = asyncio.ensure_future(self.connection.close())
        return self._closing

    async def disconnect(self) -> None:
        """Drop the connection immediately, failing any command in flight."""
        await self.connection.disconnect()
