"""Calendar helpers for renewal arithmetic."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

SECONDS_PER_DAY = 86400


def add_months(ts: float, months: int, tz: str = "UTC") -> float:
    """Add calendar months to *ts*, evaluated as wall-clock time in *tz*.

    The day of month is kept; when the target month is shorter the surplus
    days roll into the following month, so Jan 31 + 1 month is Mar 3
    (Mar 2 in a leap year). The time of day is preserved.
    """
    zone = ZoneInfo(tz)
    local = datetime.fromtimestamp(ts, tz=zone)

    month_index = local.month - 1 + months
    year = local.year + month_index // 12
    month = month_index % 12 + 1

    first = datetime(
        year, month, 1,
        local.hour, local.minute, local.second, local.microsecond,
    )
    naive = first + timedelta(days=local.day - 1)
    return naive.replace(tzinfo=zone).timestamp()


def days_until(target: float, now: float) -> int:
    """Whole days from *now* to *target*, rounded up. Negative when past."""
    return math.ceil((target - now) / SECONDS_PER_DAY)
