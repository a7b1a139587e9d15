"""Dedicated Redis connection for blocking readers."""

import logging

from redis.asyncio import ConnectionPool, Redis

from delayq.config.models import ConnectionOptions
from delayq.retry import RetryConfig, with_connection_retry

logger = logging.getLogger(__name__)


class RedisConnection:
    """Owns one Redis client that nobody else issues commands on.

    The scheduler parks this connection in ``XREAD BLOCK`` for up to a full
    stalled interval, so sharing it with other queue operations would stall
    them too. The client is created lazily on first use.

    Example:
        connection = RedisConnection(ConnectionOptions(url="redis://cache:6379/2"))
        client = await connection.wait_until_ready()
        ...
        await connection.close()
    """

    def __init__(
        self,
        options: ConnectionOptions | None = None,
        *,
        client: Redis | None = None,
        retry: RetryConfig | None = None,
    ):
        """Initialize the connection.

        Args:
            options: How to connect. Ignored when ``client`` is given.
            client: A client to adopt as the dedicated one. It is closed
                together with this connection.
            retry: Guard configuration used for the readiness ping.
        """
        self._options = options or ConnectionOptions()
        self._client = client
        self._retry = retry
        self._closed = False

    @classmethod
    def dedicated_from(
        cls, client: Redis, retry: RetryConfig | None = None
    ) -> "RedisConnection":
        """Build a new dedicated connection using another client's settings.

        The given client is left untouched and is never closed by us.
        """
        pool = client.connection_pool
        kwargs = dict(pool.connection_kwargs)
        kwargs["decode_responses"] = True
        kwargs["socket_timeout"] = None
        dedicated = Redis(
            connection_pool=ConnectionPool(
                connection_class=pool.connection_class, **kwargs
            )
        )
        return cls(client=dedicated, retry=retry)

    @property
    def client(self) -> Redis:
        """Get or create the Redis client (lazy initialization)."""
        if self._client is None:
            password = self._options.password
            self._client = Redis.from_url(
                self._options.url,
                decode_responses=True,
                password=password.get_secret_value() if password else None,
                socket_connect_timeout=self._options.socket_connect_timeout,
                # Blocking reads wait as long as they were asked to
                socket_timeout=None,
            )
        return self._client

    @property
    def closed(self) -> bool:
        return self._closed

    async def wait_until_ready(self) -> Redis:
        """Return the client once the server answers a PING."""
        client = self.client
        await with_connection_retry(
            client.ping, self._retry, operation_name="ping"
        )
        return client

    async def close(self) -> None:
        """Close gracefully, letting pending commands finish."""
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            await self._client.aclose()
            logger.debug("redis_connection_closed")

    async def disconnect(self) -> None:
        """Drop every socket right away, including ones in use.

        A command in flight (such as a blocking read) fails with a
        connection error.
        """
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            await self._client.connection_pool.disconnect(inuse_connections=True)
            await self._client.aclose()
            logger.debug("redis_connection_disconnected")
