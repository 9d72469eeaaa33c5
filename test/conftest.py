"""
Shared fixtures: a frozen clock and a queue store in a temporary directory.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from callqueue.queue.store import QueueStore
from callqueue.scheduling.business_hours import BusinessCalendar

PARIS = ZoneInfo("Europe/Paris")

# Monday 28 July 2025, 10:00 in Paris: inside the morning window.
MONDAY_MORNING = datetime(2025, 7, 28, 10, 0, tzinfo=PARIS)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(MONDAY_MORNING)


@pytest.fixture
def calendar(clock: FrozenClock) -> BusinessCalendar:
    return BusinessCalendar(tz=PARIS, clock=clock)


@pytest.fixture
def queue_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.json"


@pytest.fixture
def store(queue_path: Path, calendar: BusinessCalendar, clock: FrozenClock) -> QueueStore:
    return QueueStore(
        queue_path,
        calendar=calendar,
        clock=clock,
        lock_timeout=2.0,
        lock_poll_interval=0.01,
    )


@pytest.fixture
def refund_payload() -> dict[str, str | None]:
    return {
        "reference": "ORD-1001",
        "customer_name": "Jean Dupont",
        "booking_date": "2025-07-30",
        "vehicle_brand": "Renault",
        "vehicle_model": "Clio",
        "registration_number": "AB-123-CD",
        "center_phone": "+33123456789",
        "center_phone_raw": "01 23 45 67 89",
        "backoffice_url": "https://backoffice.example.com/orders/1001",
    }
