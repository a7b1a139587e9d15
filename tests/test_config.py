"""Tests for configuration loading and models."""

import tomllib
from pathlib import Path

import pytest
from pydantic import ValidationError

from delayq.config import load_config
from delayq.config.loader import get_default_config
from delayq.config.models import (
    DEFAULT_REDIS_URL,
    ConnectionOptions,
    DelayqConfig,
    QueueSchedulerOptions,
)
from delayq.config.paths import get_config_path, get_delayq_home


class TestQueueSchedulerOptions:
    """Tests for QueueSchedulerOptions."""

    def test_defaults(self):
        opts = QueueSchedulerOptions()
        assert opts.stalled_interval == 30000
        assert opts.max_stalled_count == 1
        assert opts.prefix == "bull"
        assert opts.autorun is True

    def test_frozen(self):
        opts = QueueSchedulerOptions()
        with pytest.raises(ValidationError):
            opts.stalled_interval = 10  # type: ignore[misc]

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            QueueSchedulerOptions(stalled_interval=-1)
        with pytest.raises(ValidationError):
            QueueSchedulerOptions(max_stalled_count=-1)

    def test_zero_and_none_interval_accepted_by_model(self):
        # The scheduler, not the model, rejects these
        assert QueueSchedulerOptions(stalled_interval=0).stalled_interval == 0
        assert QueueSchedulerOptions(stalled_interval=None).stalled_interval is None


class TestConnectionOptions:
    """Tests for ConnectionOptions."""

    def test_defaults(self):
        opts = ConnectionOptions()
        assert opts.url == DEFAULT_REDIS_URL
        assert opts.password is None

    def test_password_is_secret(self):
        opts = ConnectionOptions(password="hunter2")
        assert "hunter2" not in repr(opts)
        assert opts.password is not None
        assert opts.password.get_secret_value() == "hunter2"


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_file(self, config_file, isolated_home):
        config = load_config(config_file)
        assert config.queues == ["emails", "reports"]
        assert config.redis.url == "redis://localhost:6379/2"
        assert config.scheduler.stalled_interval == 15000
        assert config.scheduler.max_stalled_count == 2
        assert config.scheduler.prefix == "jobs"

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("queues = [")
        with pytest.raises(tomllib.TOMLDecodeError):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[scheduler]\nmax_stalled_count = -3\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_defaults_when_no_file(self, isolated_home):
        config = load_config()
        assert config == DelayqConfig()

    def test_finds_file_in_home(self, isolated_home, config_toml_content):
        (isolated_home / "config.toml").write_text(config_toml_content)
        config = load_config()
        assert config.scheduler.prefix == "jobs"

    def test_current_directory_wins(self, isolated_home, config_toml_content):
        (isolated_home / "config.toml").write_text(config_toml_content)
        Path("delayq.toml").write_text('queues = ["local"]\n')
        config = load_config()
        assert config.queues == ["local"]

    def test_env_fills_missing_redis_settings(self, isolated_home, monkeypatch):
        monkeypatch.setenv("DELAYQ_REDIS_URL", "redis://cache:6380/1")
        monkeypatch.setenv("DELAYQ_REDIS_PASSWORD", "s3cret")
        config = load_config()
        assert config.redis.url == "redis://cache:6380/1"
        assert config.redis.password is not None
        assert config.redis.password.get_secret_value() == "s3cret"

    def test_file_value_beats_env(self, config_file, isolated_home, monkeypatch):
        monkeypatch.setenv("DELAYQ_REDIS_URL", "redis://cache:6380/1")
        config = load_config(config_file)
        assert config.redis.url == "redis://localhost:6379/2"

    def test_get_default_config(self):
        config = get_default_config()
        assert config.queues == []
        assert config.scheduler.stalled_interval == 30000


class TestPaths:
    """Tests for path helpers."""

    def test_home_from_env(self, isolated_home):
        assert get_delayq_home() == isolated_home.resolve()
        assert get_config_path() == isolated_home.resolve() / "config.toml"

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("DELAYQ_HOME", raising=False)
        assert get_delayq_home() == Path.home() / ".delayq"
