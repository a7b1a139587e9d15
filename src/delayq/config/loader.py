"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from delayq.config.models import DelayqConfig
from delayq.config.paths import get_config_path

ENV_REDIS_URL = "DELAYQ_REDIS_URL"
ENV_REDIS_PASSWORD = "DELAYQ_REDIS_PASSWORD"


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("delayq.toml"),  # Current directory
        get_config_path(),  # ~/.delayq/config.toml (or DELAYQ_HOME)
        Path("/etc/delayq/config.toml"),  # System-wide
    ]


def _resolve_env(config: dict[str, Any]) -> dict[str, Any]:
    """Fill Redis connection settings from the environment where not set."""
    section = config.setdefault("redis", {})
    if section is None:
        section = config["redis"] = {}

    if section.get("url") is None and (url := os.environ.get(ENV_REDIS_URL)):
        section["url"] = url
    if section.get("password") is None and (
        password := os.environ.get(ENV_REDIS_PASSWORD)
    ):
        section["password"] = password

    return config


def load_config(path: Path | None = None) -> DelayqConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations.

    Returns:
        Validated DelayqConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        pydantic.ValidationError: If the config values are invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    # Unlike an explicit path, a missing default file just means defaults
    raw_config: dict[str, Any] = {}
    if config_path is not None:
        with config_path.open("rb") as f:
            raw_config = tomllib.load(f)

    raw_config = _resolve_env(raw_config)

    return DelayqConfig.model_validate(raw_config)


def get_default_config() -> DelayqConfig:
    """Get a default configuration for development/testing."""
    return DelayqConfig()
