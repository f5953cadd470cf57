"""Tests for settings loading."""

from __future__ import annotations

import pytest

from flightwatch.config import ENV_VARS, WatchConfig, load_config
from flightwatch.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_var in ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)


class TestFromEnv:
    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        config = WatchConfig.from_env()

        assert config.poll_interval_seconds == 60
        assert config.dispatch_interval_seconds == 2
        assert config.max_concurrency == 5
        assert config.max_queue_size == 10_000
        assert config.provider_api_key == "secret"
        assert config.push_gateway_url == ""
        assert config.push_platforms == ["ios"]
        assert config.log_level == "INFO"

    def test_missing_api_key(self):
        with pytest.raises(ConfigError, match="FLIGHTWATCH_PROVIDER_API_KEY"):
            WatchConfig.from_env()

    def test_blank_api_key(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "   ")
        with pytest.raises(ConfigError):
            WatchConfig.from_env(overrides={"provider_api_key": "   "})

    def test_env_values_parsed(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        monkeypatch.setenv("FLIGHTWATCH_POLL_INTERVAL", "30")
        monkeypatch.setenv("FLIGHTWATCH_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("FLIGHTWATCH_PUSH_PLATFORMS", "iOS, android")
        monkeypatch.setenv("FLIGHTWATCH_LOG_LEVEL", "debug")
        config = WatchConfig.from_env()

        assert config.poll_interval_seconds == 30.0
        assert config.max_concurrency == 8
        assert config.push_platforms == ["ios", "android"]
        assert config.log_level == "DEBUG"

    def test_non_positive_interval_rejected(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        monkeypatch.setenv("FLIGHTWATCH_POLL_INTERVAL", "0")
        with pytest.raises(ConfigError):
            WatchConfig.from_env()

    def test_malformed_number_rejected(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        monkeypatch.setenv("FLIGHTWATCH_MAX_CONCURRENCY", "lots")
        with pytest.raises(ConfigError):
            WatchConfig.from_env()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            WatchConfig.from_env()


class TestLoadConfig:
    def test_yaml_overrides_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        monkeypatch.setenv("FLIGHTWATCH_POLL_INTERVAL", "30")
        path = tmp_path / "flightwatch.yaml"
        path.write_text("poll_interval_seconds: 15\nmax_concurrency: 2\n")

        config = load_config(path)
        assert config.poll_interval_seconds == 15
        assert config.max_concurrency == 2

    def test_no_path_uses_env(self, monkeypatch):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        assert load_config().provider_api_key == "secret"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_unknown_keys(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FLIGHTWATCH_PROVIDER_API_KEY", "secret")
        path = tmp_path / "flightwatch.yaml"
        path.write_text("poll_every: 5\n")
        with pytest.raises(ConfigError, match="poll_every"):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "flightwatch.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)
