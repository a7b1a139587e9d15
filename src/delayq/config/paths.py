"""Path management for delayq.

The base directory can be overridden with the DELAYQ_HOME environment variable.
"""

import os
from pathlib import Path

ENV_VAR = "DELAYQ_HOME"


def get_delayq_home() -> Path:
    """Get the base directory for delayq configuration.

    Resolution order:
    1. DELAYQ_HOME environment variable (if set)
    2. ~/.delayq
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".delayq"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_delayq_home() / "config.toml"
