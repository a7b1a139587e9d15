"""Connection guard for calls against the queue store.

Every remote call the scheduler makes goes through ``with_connection_retry``
(via ``QueueBase.check_connection_error``). Lost or reset connections are
retried with a short exponential backoff; anything else is re-raised
unchanged so the caller can treat it as fatal.

The blocking delay-stream read is the one place that does not use the
guard: it swallows connection errors itself, since a dropped connection
during a long block is routine (for example when the scheduler is closed).
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

# Pause after a swallowed connection error on the blocking read (ms)
DELAY_TIME_5 = 5

# Pattern to match connection-class errors
CONNECTION_ERROR_PATTERN = re.compile(
    r"connection (?:is )?(?:closed|reset|refused|lost)|"
    r"econnreset|econnrefused|etimedout|epipe|"
    r"broken pipe|closed by server",
    re.IGNORECASE,
)

# Servers that disable the CLIENT command (some managed offerings) reply with this
UNSUPPORTED_CLIENT_COMMAND_PATTERN = re.compile(
    r"unknown command ['`]\s*client\s*['`]", re.IGNORECASE
)


@dataclass
class RetryConfig:
    """Configuration for the connection guard."""

    enabled: bool = True
    max_retries: int = 3
    base_delay_ms: int = 5
    max_delay_ms: int = 1000


def is_connection_error(error: BaseException) -> bool:
    """Check if an error means the connection to the store was lost.

    Connection errors include:
    - redis ConnectionError / TimeoutError (and subclasses)
    - builtin ConnectionError (reset, refused, aborted, broken pipe)
    - Messages like "Connection closed by server" or ECONNRESET

    Args:
        error: The exception to check.

    Returns:
        True if the error belongs to the connection-loss class.
    """
    if isinstance(
        error,
        (
            redis_exceptions.ConnectionError,
            redis_exceptions.TimeoutError,
            ConnectionError,
        ),
    ):
        return True

    return bool(CONNECTION_ERROR_PATTERN.search(str(error)))


def is_unsupported_client_command(error: BaseException) -> bool:
    """Check if the server rejected a CLIENT subcommand as unknown."""
    return bool(UNSUPPORTED_CLIENT_COMMAND_PATTERN.search(str(error)))


async def delay(ms: float) -> None:
    """Sleep for ``ms`` milliseconds."""
    await asyncio.sleep(ms / 1000)


async def with_connection_retry[T](
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "redis call",
) -> T:
    """Execute an async store call, retrying on connection loss.

    Args:
        func: Async function to execute.
        config: Retry configuration.
        operation_name: Name for logging.

    Returns:
        Result of the function.

    Raises:
        Any non-connection error immediately, or the last connection
        error once retries are exhausted.
    """
    config = config or RetryConfig()

    if not config.enabled:
        return await func()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_connection_error(e):
                raise

            if attempt >= config.max_retries:
                logger.warning(
                    "connection_retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": config.max_retries + 1,
                        "error.message": str(e),
                        "error.type": type(e).__name__,
                    },
                )
                raise

            delay_ms = min(
                config.base_delay_ms * (2**attempt),
                config.max_delay_ms,
            )

            logger.info(
                "connection_retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_retries + 1,
                    "retry_delay_ms": delay_ms,
                    "error.message": str(e),
                    "error.type": type(e).__name__,
                },
            )

            await delay(delay_ms)

    raise AssertionError("unreachable")
