# config.py

"""Application configuration utilities.

Values are primarily loaded from ``config.json`` and may be overridden by
environment variables. The :func:`get_settings` helper merges the two sources
and caches the result.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings merged from JSON and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./pos.db"
    redis_url: str | None = None
    low_stock_alerts: bool = True
    integrity_check_interval_secs: int = 6 * 60 * 60
    backup_dir: str = "./backups"
    max_backups: int = 30
    backup_full_hour: int = 2
    backup_incremental_hours: Annotated[list[int], NoDecode] = list(range(9, 19))
    audit_retention_days: int = 90
    max_conn_per_ip: int = 20
    heartbeat_timeout_sec: int = 30
    scheduler_enabled: bool = True
    log_level: str = "INFO"

    @field_validator("backup_incremental_hours", mode="before")
    @classmethod
    def _split_hours(cls, value):
        # env overrides arrive as "9,10,11"
        if isinstance(value, str):
            return [int(part) for part in value.split(",") if part.strip()]
        return value


# Cached singleton to avoid repeated file reads
@lru_cache
def get_settings() -> Settings:
    """Return merged settings with environment variable precedence.

    The configuration is read from ``config.json`` located alongside this file
    and fed into :class:`Settings`. Environment variables override any values
    from the JSON file. The result is cached to prevent repeated disk reads.
    """

    config_path = Path(__file__).with_name("config.json")
    data = json.loads(config_path.read_text()) if config_path.exists() else {}
    env_override = {
        k.lower(): v
        for k, v in os.environ.items()
        if k.lower() in Settings.model_fields
    }
    merged = {**data, **env_override}
    return Settings(**merged)
