"""Service configuration using Pydantic Settings.

Configuration is environment-driven:
- QUOTDD_ENV selects an optional .env.{environment} file to load first
- Every setting can be overridden with a QUOTDD_* environment variable
- Settings are loaded once at startup via load_settings()
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quotdd.core.errors import ConfigurationAppError


# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "production": ".env.production",
}


class ServerSettings(BaseSettings):
    """Listening socket and connection handling configuration."""

    host: str = Field(
        "0.0.0.0",
        description="IPv4 address to listen on (all interfaces by default)",
    )
    port: int = Field(
        17,
        description="TCP port to listen on",
        ge=0,
        le=65535,
    )
    backlog: int = Field(
        128,
        description="Listen backlog for pending connections",
        ge=1,
    )
    write_timeout_seconds: float | None = Field(
        None,
        description="Abort a quote write after this many seconds (unset: wait forever)",
        gt=0,
    )
    connection_error_policy: Literal["fail", "log"] = Field(
        "fail",
        description="'fail' stops the service on a connection I/O error, 'log' logs and continues",
    )

    @field_validator("port", mode="before")
    @classmethod
    def _require_decimal_port(cls, value: object) -> object:
        if isinstance(value, str) and not re.fullmatch(r"\+?[0-9]+", value):
            raise ValueError("port must be a decimal integer between 0 and 65535")
        return value

    model_config = SettingsConfigDict(
        env_prefix="QUOTDD_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-address admission control configuration."""

    threshold: int = Field(
        10,
        description="Requests admitted per address before rejecting",
        ge=1,
    )
    decay: int = Field(
        10,
        description="Amount subtracted from every address counter on each tick",
        ge=1,
    )
    period_seconds: float = Field(
        60.0,
        description="Interval between decay ticks in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTDD_RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["plain", "json"] = Field(
        "plain",
        description="Human-readable lines or one JSON object per line",
    )
    output: Literal["stderr", "file"] = Field("stderr", description="Log destination")
    file_path: str | None = Field(
        "logs/quotdd.log",
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        0,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(3, description="Rotated files to keep", ge=0)

    model_config = SettingsConfigDict(
        env_prefix="QUOTDD_LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container composed from the groups above."""

    env: str = "development"
    server: ServerSettings = Field(default_factory=ServerSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        env_prefix="QUOTDD_",
        case_sensitive=False,
    )


def _load_env_file(env: str) -> None:
    """Populate os.environ from .env.{env} when that file exists."""

    env_path = PROJECT_ROOT / ENV_FILE_MAP.get(env, ".env.development")
    if env_path.is_file():
        load_dotenv(env_path, override=True)


def _describe_validation_error(
    exc: ValidationError, group: type[BaseSettings]
) -> ConfigurationAppError:
    """Turn a pydantic ValidationError into a ConfigurationAppError.

    The message names the offending environment variable, e.g.
    ``invalid value for QUOTDD_PORT: Input should be less than or equal to 65535``.
    """

    first = exc.errors()[0]
    prefix = group.model_config.get("env_prefix", "")
    field = "_".join(str(part) for part in first["loc"])
    variable = f"{prefix}{field}".upper()
    return ConfigurationAppError(
        code="invalid_setting",
        message=f"invalid value for {variable}: {first['msg']}",
        details={"setting": variable, "hint": f"check the {variable} environment variable"},
    )


def load_settings() -> Settings:
    """Build the settings snapshot from the environment.

    Each group is constructed separately so a validation failure can be
    reported against the exact variable that caused it.

    Returns:
        Settings: Validated configuration.

    Raises:
        ConfigurationAppError: If any environment value is invalid.
    """

    env = os.getenv("QUOTDD_ENV", "development")
    _load_env_file(env)

    groups: dict[str, BaseSettings] = {}
    for name, group in (
        ("server", ServerSettings),
        ("rate_limit", RateLimitSettings),
        ("log", LogSettings),
    ):
        try:
            groups[name] = group()
        except ValidationError as exc:
            raise _describe_validation_error(exc, group) from exc

    return Settings(env=env, **groups)
