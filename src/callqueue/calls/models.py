from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from callqueue.config import Settings
from callqueue.queue.models import CleanupResult


@dataclass(frozen=True)
class DispatcherSettings:
    """Runtime knobs for the dispatcher loop."""

    interval_seconds: int = 60
    cleanup_interval_seconds: int = 3600
    conversation_min_age_seconds: int = 30
    conversation_timeout_seconds: int = 300
    retention: timedelta = timedelta(days=7)

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.conversation_timeout_seconds < self.conversation_min_age_seconds:
            raise ValueError("conversation_timeout_seconds must be >= conversation_min_age_seconds")

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatcherSettings":
        return cls(
            interval_seconds=settings.dispatcher_interval_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
            conversation_min_age_seconds=settings.conversation_min_age_seconds,
            conversation_timeout_seconds=settings.conversation_timeout_seconds,
            retention=settings.retention,
        )


@dataclass
class DispatchRunResult:
    """Summary returned after one dispatcher tick."""

    started: List[str] = field(default_factory=list)
    start_failures: List[str] = field(default_factory=list)
    # Calls placed whose conversation id could not be stored, and late recoveries of those.
    record_failures: List[str] = field(default_factory=list)
    recovered: List[str] = field(default_factory=list)
    finalized: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    business_hours: bool = True
    cleanup: CleanupResult | None = None
