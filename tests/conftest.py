"""Shared test fixtures and fakes."""

import asyncio
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
from redis import exceptions as redis_exceptions

from delayq.config.models import QueueSchedulerOptions
from delayq.connection import RedisConnection
from delayq.retry import RetryConfig
from delayq.scheduler import QueueScheduler

# =============================================================================
# Fake Redis
# =============================================================================


class FakePool:
    """Connection pool stand-in; disconnect() breaks in-flight blocking reads."""

    def __init__(self, client: "FakeRedis"):
        self._client = client

    async def disconnect(self, inuse_connections: bool = True) -> None:
        self._client.disconnected = True
        self._client.dropped.set()


class FakeRedis:
    """In-memory stand-in for the redis.asyncio calls the scheduler makes.

    ``read_results`` is consumed in order by xread(); items may be replies or
    exceptions to raise. Once empty, a blocking read waits for its block
    time (or until the pool is disconnected) and returns no entries.
    """

    def __init__(self) -> None:
        self.read_results: list[Any] = []
        self.reads: list[tuple[dict[str, str], int | None]] = []
        self.trims: list[tuple[str, int, bool]] = []
        self.setname_error: Exception | None = None
        self.name: str | None = None
        self.closed = False
        self.disconnected = False
        self.dropped = asyncio.Event()
        self.connection_pool = FakePool(self)

    async def ping(self) -> bool:
        return True

    async def client_setname(self, name: str) -> bool:
        if self.setname_error is not None:
            raise self.setname_error
        self.name = name
        return True

    async def xread(
        self,
        streams: dict[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> Any:
        self.reads.append((dict(streams), block))
        if self.read_results:
            result = self.read_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        if block:
            try:
                await asyncio.wait_for(self.dropped.wait(), block / 1000)
            except TimeoutError:
                return []
            raise redis_exceptions.ConnectionError("Connection closed by server.")
        return []

    async def xtrim(
        self,
        name: str,
        maxlen: int | None = None,
        approximate: bool = True,
        **kwargs: Any,
    ) -> int:
        self.trims.append((name, maxlen or 0, approximate))
        return 0

    async def aclose(self) -> None:
        self.closed = True


class FakeScripts:
    """Scripted results for the two atomic operations."""

    def __init__(self) -> None:
        self.delay_results: list[tuple[int | None, str | None] | BaseException] = []
        self.stalled_results: list[tuple[list[str], list[str]] | BaseException] = []
        self.update_calls: list[int] = []
        self.stalled_calls: list[int] = []

    async def update_delay_set(self, timestamp: int) -> tuple[int | None, str | None]:
        self.update_calls.append(timestamp)
        if self.delay_results:
            result = self.delay_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return None, None

    async def move_stalled_jobs_to_wait(
        self, timestamp: int
    ) -> tuple[list[str], list[str]]:
        self.stalled_calls.append(timestamp)
        if self.stalled_results:
            result = self.stalled_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return [], []


def now_ms() -> int:
    return int(time.time() * 1000)


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005
) -> None:
    """Poll ``predicate`` until true, failing the test after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


# =============================================================================
# Scheduler Fixtures
# =============================================================================


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_scripts() -> FakeScripts:
    return FakeScripts()


@pytest.fixture
def make_scheduler(
    fake_redis: FakeRedis, fake_scripts: FakeScripts
) -> Callable[..., QueueScheduler]:
    """Factory for schedulers wired to the fake client and scripts."""

    def factory(name: str = "test-queue", **options: Any) -> QueueScheduler:
        options.setdefault("autorun", False)
        options.setdefault("stalled_interval", 200)
        scheduler = QueueScheduler(
            name,
            QueueSchedulerOptions(**options),
            connection=RedisConnection(client=fake_redis),  # type: ignore[arg-type]
            retry=RetryConfig(max_retries=2, base_delay_ms=1),
        )
        scheduler.scripts = fake_scripts  # type: ignore[assignment]
        return scheduler

    return factory


@pytest.fixture
async def start_scheduler() -> AsyncGenerator[
    Callable[[QueueScheduler], Awaitable[asyncio.Task[None]]], None
]:
    """Start schedulers as tasks; close any still running after the test."""
    started: list[tuple[QueueScheduler, asyncio.Task[None]]] = []

    async def start(scheduler: QueueScheduler) -> asyncio.Task[None]:
        task = asyncio.create_task(scheduler.run())
        started.append((scheduler, task))
        await wait_until(lambda: scheduler.is_running() or task.done())
        return task

    yield start

    for scheduler, task in started:
        if not task.done():
            await asyncio.wait_for(scheduler.close(), 5)
            await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), 5)


# =============================================================================
# Config / CLI Fixtures
# =============================================================================


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
queues = ["emails", "reports"]

[redis]
url = "redis://localhost:6379/2"

[scheduler]
stalled_interval = 15000
max_stalled_count = 2
prefix = "jobs"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point DELAYQ_HOME at an empty directory and clear Redis env vars."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("DELAYQ_HOME", str(home))
    monkeypatch.delenv("DELAYQ_REDIS_URL", raising=False)
    monkeypatch.delenv("DELAYQ_REDIS_PASSWORD", raising=False)
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
