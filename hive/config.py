"""
Runtime configuration for the relay server and the poll client.

Values come from the environment (prefix ``HIVE_``), after loading a
``.env`` file if one is present.
"""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env(name: str, default=None):
    return os.getenv(f"HIVE_{name.upper()}", default)


class Settings(BaseModel):
    """Server-side settings."""

    database_url: str = "sqlite:///hive.db"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # The two audiences the update log is partitioned between
    audiences: tuple[str, str] = ("source", "target")

    pending_batch_limit: int = Field(100, ge=1)
    stale_connection_minutes: int = Field(5, ge=0)
    stale_app_minutes: int = Field(5, ge=0)

    selection_priority: int = 1
    connection_priority: int = 1
    value_priority: int = 0

    # Health thresholds (reported as warnings only)
    pending_updates_ceiling: int = 1000
    error_count_ceiling: int = 50

    # Reaper
    retention_minutes: int = Field(60, ge=0)
    error_retention_multiplier: int = Field(24, ge=1)
    reap_interval_seconds: float = Field(300.0, ge=0)

    def opposite(self, audience: str) -> str:
        """Return the audience on the other side of the relay."""
        first, second = self.audiences
        if audience == first:
            return second
        if audience == second:
            return first
        raise ValueError(f"Unknown audience: {audience}")

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        for name in cls.model_fields:
            raw = _env(name)
            if raw is None:
                continue
            if name in ("cors_origins", "audiences"):
                values[name] = [part.strip() for part in raw.split(",") if part.strip()]
            else:
                values[name] = raw
        return cls(**values)


class PollSettings(BaseModel):
    """Client-side cadence and retry bounds."""

    min_interval: float = Field(1.0, gt=0)
    max_interval: float = Field(30.0, gt=0)
    backoff_factor: float = Field(1.5, ge=1.0)
    failure_threshold: int = Field(3, ge=0)
    max_reconnect_attempts: int = Field(3, ge=1)
    reconnect_delay: float = Field(2.0, ge=0)
    broadcast_attempts: int = Field(3, ge=1)
    broadcast_base_delay: float = Field(0.5, ge=0)
    request_timeout: float = Field(10.0, gt=0)

    @classmethod
    def from_env(cls) -> "PollSettings":
        values = {
            name: _env(f"poll_{name}")
            for name in cls.model_fields
            if _env(f"poll_{name}") is not None
        }
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
