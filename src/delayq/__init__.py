"""delayq - delayed-job promotion and stalled-job recovery for Redis queues.

Public API:
- QueueScheduler: the reconciliation loop for one queue
- QueueSchedulerOptions / ConnectionOptions: configuration models
- RedisConnection: dedicated connection used by the scheduler

Errors:
- ConfigurationError, AlreadyRunningError, JobStalledError
"""

from delayq.config import ConnectionOptions, QueueSchedulerOptions
from delayq.connection import RedisConnection
from delayq.errors import (
    AlreadyRunningError,
    ConfigurationError,
    DelayqError,
    JobStalledError,
)
from delayq.scheduler import QueueScheduler

__all__ = [
    "AlreadyRunningError",
    "ConfigurationError",
    "ConnectionOptions",
    "DelayqError",
    "JobStalledError",
    "QueueScheduler",
    "QueueSchedulerOptions",
    "RedisConnection",
]
