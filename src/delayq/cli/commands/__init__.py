"""CLI command modules."""

from delayq.cli.commands import config, run

__all__ = ["config", "run"]
