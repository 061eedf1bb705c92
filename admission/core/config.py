"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: 'json' or 'plain'")
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AdmissionSettings(BaseSettings):
    """Rate limiter and throttler defaults."""

    default_penalty_ms: float = Field(
        1000.0,
        description="Retry-after hint applied when a limit has no explicit penalty",
        gt=0,
    )
    state_idle_windows: int = Field(
        10,
        description="Per-key state untouched for this many windows is evicted",
        ge=1,
    )
    sweep_interval_ms: float = Field(
        60_000.0,
        description="Minimum time between opportunistic idle-state sweeps",
        gt=0,
    )
    throttle_timeout_seconds: float | None = Field(
        None,
        description="Default deadline for throttle waits (None waits indefinitely)",
        gt=0,
    )
    register_presets: bool = Field(
        True,
        description="Register the api/auth/checkout/anonymous limits at startup",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Nested settings are created via default_factory so env loading works.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=LogSettings)
    admission: AdmissionSettings = Field(default_factory=AdmissionSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
