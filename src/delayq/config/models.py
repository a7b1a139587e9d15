"""Configuration models using Pydantic."""

import logging

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from delayq.keys import DEFAULT_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class ConnectionOptions(BaseModel):
    """How to reach the Redis server backing the queues.

    The scheduler always opens its own dedicated connection from these
    options, since it holds it in blocking reads for long periods.
    """

    model_config = ConfigDict(frozen=True)

    url: str = DEFAULT_REDIS_URL
    # Overrides any password embedded in the URL
    password: SecretStr | None = None
    socket_connect_timeout: float | None = 10.0


class QueueSchedulerOptions(BaseModel):
    """Options for a QueueScheduler. Fixed once the scheduler is built.

    stalled_interval is both the longest a single delay-stream read may
    block and the period between stalled-job sweeps (milliseconds).
    Zero or None is rejected by the scheduler itself.
    """

    model_config = ConfigDict(frozen=True)

    stalled_interval: int | None = Field(default=30000, ge=0)
    max_stalled_count: int = Field(default=1, ge=0)
    prefix: str = DEFAULT_PREFIX
    autorun: bool = True


class DelayqConfig(BaseModel):
    """Root configuration model."""

    redis: ConnectionOptions = Field(default_factory=ConnectionOptions)
    scheduler: QueueSchedulerOptions = Field(default_factory=QueueSchedulerOptions)
    # Queues to run schedulers for when none are given on the command line
    queues: list[str] = Field(default_factory=list)
