"""
Application settings for vodcast.

This module defines all configuration settings for vodcast using Pydantic BaseSettings.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    # Shared state store
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    kv_rest_url: str | None = Field(default=None, alias="KV_REST_URL")
    kv_rest_token: str | None = Field(default=None, alias="KV_REST_TOKEN")
    store_timeout_seconds: float = Field(default=1.0, alias="STORE_TIMEOUT_SECONDS")
    store_retry_interval_seconds: float = Field(default=30.0, alias="STORE_RETRY_INTERVAL_SECONDS")
    state_ttl_seconds: int = Field(default=86400, alias="STATE_TTL_SECONDS")
    ttl_refresh_interval_seconds: float = Field(default=300.0, alias="TTL_REFRESH_INTERVAL_SECONDS")
    key_prefix: str = Field(default="streaming", alias="KEY_PREFIX")
    channel_id: str = Field(default="main", alias="CHANNEL_ID")

    # Scheduling
    default_duration_seconds: int = Field(default=3600, gt=0, alias="DEFAULT_DURATION_SECONDS")
    preserve_position_on_refresh: bool = Field(default=False, alias="PRESERVE_POSITION_ON_REFRESH")
    poll_interval_seconds: float = Field(default=15.0, alias="POLL_INTERVAL_SECONDS")

    # Content source (file wins over URL)
    content_source_path: str | None = Field(default=None, alias="CONTENT_SOURCE_PATH")
    content_source_url: str | None = Field(default=None, alias="CONTENT_SOURCE_URL")
    content_source_token: str | None = Field(default=None, alias="CONTENT_SOURCE_TOKEN")
    content_source_timeout_seconds: float = Field(default=10.0, alias="CONTENT_SOURCE_TIMEOUT_SECONDS")

    # Duration probing
    probe_durations: bool = Field(default=False, alias="PROBE_DURATIONS")
    ffprobe_path: str = Field(default="ffprobe", alias="FFPROBE_PATH")
    probe_timeout_seconds: float = Field(default=20.0, alias="PROBE_TIMEOUT_SECONDS")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    env: str = Field(default="dev", alias="ENV")  # dev|prod|test

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("VODCAST_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)

    # 3) Walk up from this file to find nearest .env
    here = Path(__file__).resolve()
    for parent in here.parents:
        candidate = parent / ".env"
        if candidate.is_file():
            return str(candidate)
    return None


# Global settings instance (load from best-effort .env discovery)
_env_file = _resolve_env_file()
settings = Settings(_env_file=_env_file) if _env_file else Settings()  # type: ignore[call-arg]
