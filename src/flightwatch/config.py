"""Runtime settings for the poller, the notification queue and their collaborators.

Settings come from environment variables, optionally overridden by a YAML
file. Anything missing or malformed raises ``ConfigError`` so the host never
starts a loop on a half-configured core.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from flightwatch.errors import ConfigError

DEFAULT_PROVIDER_URL = "https://aeroapi.flightaware.com/aeroapi"

# field name -> environment variable
ENV_VARS = {
    "poll_interval_seconds": "FLIGHTWATCH_POLL_INTERVAL",
    "dispatch_interval_seconds": "FLIGHTWATCH_DISPATCH_INTERVAL",
    "max_concurrency": "FLIGHTWATCH_MAX_CONCURRENCY",
    "max_queue_size": "FLIGHTWATCH_MAX_QUEUE_SIZE",
    "provider_base_url": "FLIGHTWATCH_PROVIDER_URL",
    "provider_api_key": "FLIGHTWATCH_PROVIDER_API_KEY",
    "provider_timeout_seconds": "FLIGHTWATCH_PROVIDER_TIMEOUT",
    "push_gateway_url": "FLIGHTWATCH_PUSH_URL",
    "push_timeout_seconds": "FLIGHTWATCH_PUSH_TIMEOUT",
    "push_platforms": "FLIGHTWATCH_PUSH_PLATFORMS",
    "database_url": "DATABASE_URL",
    "log_level": "FLIGHTWATCH_LOG_LEVEL",
}


class WatchConfig(BaseModel):
    """Scalar settings consumed by the core."""

    poll_interval_seconds: float = Field(default=60.0, gt=0)
    dispatch_interval_seconds: float = Field(default=2.0, gt=0)
    max_concurrency: int = Field(default=5, ge=1)
    max_queue_size: int = Field(default=10_000, ge=1)

    provider_base_url: str = DEFAULT_PROVIDER_URL
    provider_api_key: str
    provider_timeout_seconds: float = Field(default=10.0, gt=0)

    push_gateway_url: str = ""  # empty -> dry-run gateway
    push_timeout_seconds: float = Field(default=10.0, gt=0)
    push_platforms: list[str] = Field(default_factory=lambda: ["ios"])

    database_url: str | None = None
    log_level: str = "INFO"

    @field_validator("provider_api_key")
    @classmethod
    def _api_key_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("provider API key must not be empty")
        return value.strip()

    @field_validator("push_platforms", mode="before")
    @classmethod
    def _split_platforms(cls, value: object) -> object:
        if isinstance(value, str):
            return [p.strip().lower() for p in value.split(",") if p.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, overrides: dict | None = None) -> WatchConfig:
        """Build from environment variables; ``overrides`` wins over the env.

        Raises:
            ConfigError: If a required setting is missing or a value is invalid.
        """
        values: dict = {}
        for field_name, env_var in ENV_VARS.items():
            raw = os.environ.get(env_var)
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update(overrides or {})

        if "provider_api_key" not in values:
            raise ConfigError(
                "Flight provider not configured. Set FLIGHTWATCH_PROVIDER_API_KEY."
            )
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid flightwatch settings: {exc}") from exc


def load_config(path: Path | str | None = None) -> WatchConfig:
    """Load settings from the environment, overridden by a YAML file if given.

    The YAML file is a flat mapping of ``WatchConfig`` field names, e.g.::

        poll_interval_seconds: 30
        max_concurrency: 8
    """
    overrides: dict = {}
    if path is not None:
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_file}")
        unknown = sorted(set(data) - set(WatchConfig.model_fields))
        if unknown:
            raise ConfigError(f"Unknown settings in {config_file}: {', '.join(unknown)}")
        overrides = data
    return WatchConfig.from_env(overrides)
