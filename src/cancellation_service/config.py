"""Configuration management for the order cancellation service."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from cancellation_service.utils.http import normalize_base_url

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AxiomSettings(BaseModel):
    """Connection settings for the Axiom dataset holding cancellation attempts.

    The API token has no default: the service refuses to start without one.
    """

    api_token: str = Field(min_length=1)
    dataset: str = Field(min_length=1)
    region: Literal["us", "eu"] = Field(default="us")
    timeout_seconds: float = Field(default=5.0, gt=0, le=120)

    @field_validator("api_token", "dataset", mode="before")
    @classmethod
    def _strip_required(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class MonitoringSettings(BaseModel):
    health_check_interval_seconds: float = Field(default=300.0, gt=0)
    quality_check_interval_seconds: float = Field(default=3600.0, gt=0)
    quality_check_enabled: bool = Field(
        default=False,
        description="Run the quality checker inside the HTTP server process.",
    )
    quality_check_initial_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Wait before the first in-process cycle so the server is listening.",
    )
    api_base_url: str = Field(default="http://localhost:3000")

    @field_validator("api_base_url")
    @classmethod
    def _validate_api_base_url(cls, value: str) -> str:
        return normalize_base_url(value)


class ServerSettings(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    trust_forwarded_headers: bool = Field(default=False)


class Settings(BaseModel):
    axiom: AxiomSettings
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_KEYS = {
    "api_token": "AXIOM_API_TOKEN",
    "dataset": "AXIOM_DATASET_NAME",
    "region": "AXIOM_REGION",
    "timeout": "AXIOM_TIMEOUT_SECONDS",
    "health_check_interval": "AXIOM_HEALTH_CHECK_INTERVAL_SECONDS",
    "quality_check_interval": "QUALITY_CHECK_INTERVAL_SECONDS",
    "quality_check_enabled": "QUALITY_CHECK_ENABLED",
    "quality_check_initial_delay": "QUALITY_CHECK_INITIAL_DELAY_SECONDS",
    "api_base_url": "API_BASE_URL",
    "host": "HOST",
    "port": "PORT",
    "trust_forwarded_headers": "HTTP_TRUST_FORWARDED_HEADERS",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")

    monitoring_defaults = MonitoringSettings()
    server_defaults = ServerSettings()

    settings_data: dict[str, object] = {
        "axiom": {
            "api_token": os.getenv(ENV_KEYS["api_token"], ""),
            "dataset": os.getenv(ENV_KEYS["dataset"], ""),
            "region": os.getenv(ENV_KEYS["region"], "us").strip().lower(),
            "timeout_seconds": _env_float(ENV_KEYS["timeout"], 5.0),
        },
        "monitoring": {
            "health_check_interval_seconds": _env_float(
                ENV_KEYS["health_check_interval"],
                monitoring_defaults.health_check_interval_seconds,
            ),
            "quality_check_interval_seconds": _env_float(
                ENV_KEYS["quality_check_interval"],
                monitoring_defaults.quality_check_interval_seconds,
            ),
            "quality_check_enabled": _env_bool(
                ENV_KEYS["quality_check_enabled"],
                monitoring_defaults.quality_check_enabled,
            ),
            "quality_check_initial_delay_seconds": _env_float(
                ENV_KEYS["quality_check_initial_delay"],
                monitoring_defaults.quality_check_initial_delay_seconds,
            ),
            "api_base_url": os.getenv(
                ENV_KEYS["api_base_url"], monitoring_defaults.api_base_url
            ),
        },
        "server": {
            "host": os.getenv(ENV_KEYS["host"], server_defaults.host),
            "port": _env_int(ENV_KEYS["port"], server_defaults.port),
            "trust_forwarded_headers": _env_bool(
                ENV_KEYS["trust_forwarded_headers"],
                server_defaults.trust_forwarded_headers,
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": os.getenv(ENV_KEYS["log_file"]) or None,
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(
            f"Invalid configuration: {exc}. "
            f"Set {ENV_KEYS['api_token']}, {ENV_KEYS['dataset']} and "
            f"{ENV_KEYS['region']} (us or eu)."
        ) from exc
