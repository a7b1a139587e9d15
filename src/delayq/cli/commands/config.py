"""Configuration management commands."""

import tomllib
from pathlib import Path
from typing import Annotated

import click
import typer

from delayq.cli.console import console, error, success


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Path to config file (default: $DELAYQ_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Manage configuration."""
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from pydantic import ValidationError
        from rich.syntax import Syntax
        from rich.table import Table

        from delayq.config import load_config
        from delayq.config.paths import get_config_path

        expanded_path = path.expanduser() if path else get_config_path()

        if action == "show":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            content = expanded_path.read_text()
            syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
            console.print(f"[bold]Config file: {expanded_path}[/bold]\n")
            console.print(syntax)

        elif action == "validate":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            try:
                config_obj = load_config(expanded_path)
            except tomllib.TOMLDecodeError as e:
                error(f"Invalid TOML: {e}")
                raise typer.Exit(1) from None
            except ValidationError as e:
                error("Configuration validation failed:")
                console.print()
                for err in e.errors():
                    loc = ".".join(str(x) for x in err["loc"])
                    console.print(f"  [yellow]{loc}[/yellow]: {err['msg']}")
                raise typer.Exit(1) from None

            scheduler = config_obj.scheduler
            if not scheduler.stalled_interval:
                error("scheduler.stalled_interval cannot be zero")
                raise typer.Exit(1)

            table = Table(title="Configuration Summary")
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            from delayq.logging import CredentialRedactor

            table.add_row("Redis", CredentialRedactor().redact(config_obj.redis.url))
            table.add_row("Stalled interval", f"{scheduler.stalled_interval} ms")
            table.add_row("Max stalled count", str(scheduler.max_stalled_count))
            table.add_row("Key prefix", scheduler.prefix)
            table.add_row(
                "Queues",
                ", ".join(config_obj.queues)
                if config_obj.queues
                else "[dim]none (pass on command line)[/dim]",
            )

            success("Configuration is valid!")
            console.print()
            console.print(table)

        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: show, validate")
            raise typer.Exit(1)
