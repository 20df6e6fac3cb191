"""Timezone-aware date helpers.

Some drivers (SQLite) hand back naive datetimes even for
``DateTime(timezone=True)`` columns; every value read from the store goes
through ``ensure_utc`` before it is compared with ``utcnow()``.
"""

import calendar
import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and normalize aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 28 (or 29), not Mar 3.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def days_until(value: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days remaining until ``value``, rounded up; 0 once passed."""
    if value is None:
        return 0
    now = now or utcnow()
    seconds = (ensure_utc(value) - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)
