"""
Opening hours of the inspection centres.

Calls are only placed Monday to Friday, 09:00-12:00 and 14:00-17:00,
in a single civil timezone (Europe/Paris by default). Public holidays are
not modelled.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = ZoneInfo("Europe/Paris")

MORNING_OPEN = time(9, 0)
MORNING_CLOSE = time(12, 0)
AFTERNOON_OPEN = time(14, 0)
AFTERNOON_CLOSE = time(17, 0)

# Upper bound on snapping iterations (two weeks of search).
MAX_SEARCH_STEPS = 14

_SATURDAY = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    # Naive datetimes are taken as UTC.
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def _at(local: datetime, at: time) -> datetime:
    return local.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)


class BusinessCalendar:
    """Fixed weekly opening pattern evaluated in one timezone."""

    def __init__(
        self,
        tz: tzinfo = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tz = tz
        self._clock = clock

    @property
    def timezone(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return _as_utc(self._clock())

    def localize(self, instant: datetime) -> datetime:
        return _as_utc(instant).astimezone(self._tz)

    def is_business_hours(self, instant: datetime | None = None) -> bool:
        """Return True if ``instant`` (default: now) falls inside an opening window."""
        local = self.localize(instant if instant is not None else self.now())
        if local.weekday() >= _SATURDAY:
            return False
        wall = local.time()
        return MORNING_OPEN <= wall < MORNING_CLOSE or AFTERNOON_OPEN <= wall < AFTERNOON_CLOSE

    def next_business_time(
        self,
        from_instant: datetime | None = None,
        delay: timedelta = timedelta(0),
    ) -> datetime:
        """Return the next instant at which a call may be placed.

        ``delay`` is added in absolute time first. Without a delay an instant
        that is already open is returned unchanged. With a delay the result
        never stays inside the window it lands in: a morning landing moves to
        14:00 and an afternoon landing moves to the next morning, which is
        evaluated again.

        Args:
            from_instant: Reference instant (default: now). Naive values are UTC.
            delay: Extra delay to add before snapping. Must not be negative.

        Returns:
            Timezone-aware UTC datetime.
        """
        if delay < timedelta(0):
            raise ValueError("delay must be >= 0")

        start = _as_utc(from_instant if from_instant is not None else self.now())
        delayed = delay > timedelta(0)
        candidate = (start + delay).astimezone(self._tz)

        if not delayed and self.is_business_hours(candidate):
            return candidate.astimezone(timezone.utc)

        for _ in range(MAX_SEARCH_STEPS):
            weekday = candidate.weekday()
            hour = candidate.hour

            if weekday >= _SATURDAY:
                # Saturday -> +2 days, Sunday -> +1 day
                candidate = _at(candidate + timedelta(days=7 - weekday), MORNING_OPEN)
                break
            if hour < MORNING_OPEN.hour:
                candidate = _at(candidate, MORNING_OPEN)
                break
            if hour < MORNING_CLOSE.hour:
                if delayed:
                    candidate = _at(candidate, AFTERNOON_OPEN)
                break
            if hour < AFTERNOON_OPEN.hour:
                candidate = _at(candidate, AFTERNOON_OPEN)
                break
            if hour < AFTERNOON_CLOSE.hour and not delayed:
                break
            candidate = _at(candidate + timedelta(days=1), MORNING_OPEN)

        return candidate.astimezone(timezone.utc)

    def format(self, instant: datetime) -> str:
        """Format ``instant`` as ``DD/MM/YYYY HH:MM`` in local time."""
        return self.localize(instant).strftime("%d/%m/%Y %H:%M")


_default_calendar = BusinessCalendar()


def is_business_hours(instant: datetime | None = None) -> bool:
    return _default_calendar.is_business_hours(instant)


def next_business_time(
    from_instant: datetime | None = None,
    delay: timedelta = timedelta(0),
) -> datetime:
    return _default_calendar.next_business_time(from_instant, delay)


def format_business_time(instant: datetime) -> str:
    return _default_calendar.format(instant)
