"""Configuration module."""

from delayq.config.loader import get_default_config, load_config
from delayq.config.models import (
    DEFAULT_REDIS_URL,
    ConnectionOptions,
    DelayqConfig,
    QueueSchedulerOptions,
)
from delayq.config.paths import get_config_path, get_delayq_home

__all__ = [
    "DEFAULT_REDIS_URL",
    "ConnectionOptions",
    "DelayqConfig",
    "QueueSchedulerOptions",
    "get_config_path",
    "get_default_config",
    "get_delayq_home",
    "load_config",
]
