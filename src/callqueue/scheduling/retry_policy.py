"""
Backoff delays between two call attempts, by outcome category.
"""

from datetime import timedelta
from typing import Mapping

DEFAULT_CATEGORY = "failed"

RETRY_DELAYS_MINUTES: Mapping[str, tuple[int, ...]] = {
    "callback_requested": (120, 240, 1440),
    "no_answer": (30, 60, 120),
    "voicemail": (30, 60, 120),
    DEFAULT_CATEGORY: (15, 30, 60),
}


def _delays_for(category: str | None) -> tuple[int, ...]:
    # Unknown labels fall back to the generic failure table.
    return RETRY_DELAYS_MINUTES.get(category or DEFAULT_CATEGORY, RETRY_DELAYS_MINUTES[DEFAULT_CATEGORY])


def retry_delay_minutes(category: str | None, attempt: int) -> int:
    """Delay in minutes before attempt number ``attempt`` (1-based) of ``category``.

    Attempts beyond the table reuse its last (largest) entry.
    """
    delays = _delays_for(category)
    index = min(max(attempt, 1), len(delays)) - 1
    return delays[index]


def retry_delay(category: str | None, attempt: int) -> timedelta:
    return timedelta(minutes=retry_delay_minutes(category, attempt))


def max_attempts(category: str | None) -> int:
    """Retry ceiling for ``category``: the length of its delay table."""
    return len(_delays_for(category))
