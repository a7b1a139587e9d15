"""Error types raised by delayq.

Transient store failures are not wrapped: they surface as the client
library's own ``redis.exceptions`` types and are classified by
``delayq.retry``. Stalled or failed jobs are never errors, they are
delivered as events.
"""


class DelayqError(Exception):
    """Base class for delayq errors."""

    pass


class ConfigurationError(DelayqError):
    """Invalid options or a scheduler used in a way it does not support."""

    pass


class AlreadyRunningError(ConfigurationError):
    """A second loop was started on a scheduler that is already running."""

    def __init__(self, message: str = "Queue Scheduler is already running."):
        super().__init__(message)


class JobStalledError(DelayqError):
    """Failure reason passed to ``failed`` listeners for stalled-out jobs.

    Never raised: a job going over its stall limit is a normal outcome.
    """

    def __init__(self, message: str = "job stalled more than allowable limit"):
        super().__init__(message)
