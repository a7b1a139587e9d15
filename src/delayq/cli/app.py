"""Main CLI application."""

import typer

from delayq.cli.commands import config, run

app = typer.Typer(
    name="delayq",
    help="delayq - delayed and stalled job scheduler for Redis queues",
    no_args_is_help=True,
)

run.register(app)
config.register(app)


if __name__ == "__main__":
    app()
