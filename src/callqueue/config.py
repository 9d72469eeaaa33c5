"""
Application configuration with environment-driven settings.
"""

from datetime import timedelta
from functools import lru_cache
import os
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "callqueue"
    app_env: Literal["dev", "qa", "uat", "prod"] = "dev"
    debug: bool = False
    log_level: str = "INFO"

    # Queue persistence
    queue_file: Path = Field(
        default=Path("queue.json"),
        description="JSON document holding the four queue partitions and counters",
    )
    lock_file: Path = Field(
        default=Path("queue.lock"),
        description="Advisory lock marker shared by every process using the queue",
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Maximum time spent waiting for the queue lock.",
    )
    lock_stale_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Age after which a lock marker is presumed abandoned and reclaimed.",
    )
    lock_poll_interval_seconds: float = Field(
        default=0.1,
        gt=0,
        le=5,
        description="Sleep between two lock acquisition attempts.",
    )
    retention_days: int = Field(
        default=7,
        ge=1,
        description="Completed/failed items older than this are removed by cleanup.",
    )

    # Business calendar
    business_timezone: str = Field(
        default="Europe/Paris",
        description="IANA timezone in which opening hours are evaluated.",
    )

    # Dispatcher
    dispatcher_enabled: bool = Field(
        default=False,
        description="Run the background dispatcher loop at app startup.",
    )
    dispatcher_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Dispatcher tick interval in seconds.",
    )
    cleanup_interval_seconds: int = Field(
        default=3600,
        ge=60,
        description="Minimum interval between two retention cleanups.",
    )
    conversation_min_age_seconds: int = Field(
        default=30,
        ge=0,
        description="Do not poll a conversation before it is this old.",
    )
    conversation_timeout_seconds: int = Field(
        default=300,
        ge=30,
        description="An unfinished conversation older than this counts as a failed attempt.",
    )

    # Downstream automation
    outcome_webhook_url: str = Field(
        default="",
        description="Endpoint receiving terminal call outcomes (empty disables delivery).",
    )
    outcome_webhook_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for outcome delivery.",
    )

    @field_validator("business_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA timezone names early."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)


@lru_cache
def _get_settings_cached() -> Settings:
    return Settings()


def get_settings() -> Settings:
    # Under pytest, env vars change through monkeypatch: never hand out a frozen instance.
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return Settings()
    return _get_settings_cached()
