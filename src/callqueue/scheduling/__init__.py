"""
Business calendar and retry policy.

Pure functions only: no state, no I/O.
"""

from callqueue.scheduling.business_hours import (
    BusinessCalendar,
    format_business_time,
    is_business_hours,
    next_business_time,
)
from callqueue.scheduling.retry_policy import (
    DEFAULT_CATEGORY,
    RETRY_DELAYS_MINUTES,
    max_attempts,
    retry_delay,
    retry_delay_minutes,
)

__all__ = [
    "BusinessCalendar",
    "DEFAULT_CATEGORY",
    "RETRY_DELAYS_MINUTES",
    "format_business_time",
    "is_business_hours",
    "max_attempts",
    "next_business_time",
    "retry_delay",
    "retry_delay_minutes",
]
