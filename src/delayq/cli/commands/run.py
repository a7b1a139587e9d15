"""Run command: one scheduler per queue until interrupted."""

import asyncio
import logging
import signal as signal_module
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer

from delayq.cli.console import error
from delayq.config.models import ConnectionOptions, QueueSchedulerOptions

if TYPE_CHECKING:
    from delayq.scheduler import QueueScheduler

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the run command."""

    @app.command()
    def run(
        queues: Annotated[
            list[str] | None,
            typer.Argument(help="Queue names (default: queues from config)"),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        url: Annotated[
            str | None,
            typer.Option("--url", "-u", help="Redis URL"),
        ] = None,
        stalled_interval: Annotated[
            int | None,
            typer.Option(
                "--stalled-interval",
                help="Stall check period and max block time, in milliseconds",
            ),
        ] = None,
        max_stalled_count: Annotated[
            int | None,
            typer.Option(
                "--max-stalled-count",
                help="Times a job may stall before it is failed",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR"),
        ] = None,
    ) -> None:
        """Run the delayed/stalled job scheduler for one or more queues."""
        from pydantic import ValidationError

        from delayq.config import load_config
        from delayq.errors import ConfigurationError
        from delayq.logging import configure_logging

        configure_logging(level=log_level, use_rich=True)

        try:
            delayq_config = load_config(config)

            names = queues or delayq_config.queues
            redis_options = delayq_config.redis
            if url is not None:
                redis_options = ConnectionOptions.model_validate(
                    {**redis_options.model_dump(), "url": url}
                )

            overrides: dict[str, Any] = {"autorun": False}
            if stalled_interval is not None:
                overrides["stalled_interval"] = stalled_interval
            if max_stalled_count is not None:
                overrides["max_stalled_count"] = max_stalled_count
            scheduler_options = QueueSchedulerOptions.model_validate(
                {**delayq_config.scheduler.model_dump(), **overrides}
            )
        except (FileNotFoundError, tomllib.TOMLDecodeError) as e:
            error(str(e))
            raise typer.Exit(1) from None
        except ValidationError as e:
            error(f"Invalid configuration: {e}")
            raise typer.Exit(1) from None

        if not names:
            error("No queues given. Pass queue names or set 'queues' in the config")
            raise typer.Exit(1)

        try:
            exit_code = asyncio.run(
                _run_schedulers(names, scheduler_options, redis_options)
            )
        except ConfigurationError as e:
            error(str(e))
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            # Use print here since the console may be mid-render
            print("\nScheduler stopped")
            exit_code = 0

        if exit_code:
            raise typer.Exit(exit_code)


async def _run_schedulers(
    names: list[str],
    scheduler_options: QueueSchedulerOptions,
    redis_options: ConnectionOptions,
) -> int:
    """Run schedulers until a signal arrives or one of them fails.

    Returns:
        Process exit code: 0 on a clean shutdown, 1 if a scheduler failed.
    """
    from delayq.scheduler import QueueScheduler

    schedulers: list[QueueScheduler] = [
        QueueScheduler(name, scheduler_options, connection=redis_options)
        for name in names
    ]
    for scheduler in schedulers:
        _attach_event_logging(scheduler)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    for sig in (signal_module.SIGTERM, signal_module.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    tasks = [asyncio.create_task(s.run()) for s in schedulers]
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait(
            [shutdown_task, *tasks], return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        shutdown_task.cancel()
        await asyncio.gather(*(s.close() for s in schedulers))
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for sig in (signal_module.SIGTERM, signal_module.SIGINT):
            loop.remove_signal_handler(sig)

    exit_code = 0
    for scheduler, result in zip(schedulers, results, strict=True):
        if isinstance(result, BaseException):
            logger.error(
                "queue_scheduler_failed",
                extra={"queue.name": scheduler.name, "error.message": str(result)},
                exc_info=result,
            )
            exit_code = 1
    return exit_code


def _attach_event_logging(scheduler: "QueueScheduler") -> None:
    name = scheduler.name

    def on_failed(job_id: str, reason: Exception, prev: str) -> None:
        logger.warning(
            "job_failed",
            extra={
                "queue.name": name,
                "job.id": job_id,
                "job.prev": prev,
                "job.failed_reason": str(reason),
            },
        )

    def on_stalled(job_id: str, prev: str) -> None:
        logger.info(
            "job_stalled",
            extra={"queue.name": name, "job.id": job_id, "job.prev": prev},
        )

    scheduler.on("failed", on_failed)
    scheduler.on("stalled", on_stalled)
