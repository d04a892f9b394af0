"""Five-field cron expressions evaluated in a named timezone.

Expression format: minute hour day_of_month month day_of_week
Supports: *, ranges (1-5), steps (*/15, 1-10/2), lists (1,3,5).
Day of week runs 0-7 with both 0 and 7 meaning Sunday.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common.errors import ScheduleParseError

# How far ahead to search before deciding an expression can never fire
# (e.g. "0 0 30 2 *"). Long enough to cover a Feb 29 schedule.
_SEARCH_YEARS = 8


@dataclass(frozen=True)
class CronSpec:
    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]  # 0=Sunday
    dom_restricted: bool
    dow_restricted: bool

    def matches_day(self, dt: datetime) -> bool:
        dom_ok = dt.day in self.days_of_month
        dow_ok = (dt.weekday() + 1) % 7 in self.days_of_week
        # Standard cron: when both fields are restricted either one may match.
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok


def _parse_int(token: str, expression: str) -> int:
    if not token.isdigit():
        raise ScheduleParseError(f"Invalid cron token {token!r} in {expression!r}")
    return int(token)


def _parse_cron_field(field: str, min_val: int, max_val: int, expression: str) -> frozenset[int]:
    """Parse a single cron field into the set of matching integer values."""
    values: set[int] = set()

    for part in field.split(","):
        if not part:
            raise ScheduleParseError(f"Empty list item in {expression!r}")

        step = 1
        stepped = "/" in part
        if stepped:
            part, step_str = part.split("/", 1)
            step = _parse_int(step_str, expression)
            if step == 0:
                raise ScheduleParseError(f"Zero step in {expression!r}")

        if part == "*":
            lo, hi = min_val, max_val
        elif "-" in part:
            lo_str, hi_str = part.split("-", 1)
            lo, hi = _parse_int(lo_str, expression), _parse_int(hi_str, expression)
            if lo > hi:
                raise ScheduleParseError(f"Inverted range {part!r} in {expression!r}")
        else:
            lo = _parse_int(part, expression)
            # "5/15" means every 15 starting at 5
            hi = max_val if stepped else lo

        if lo < min_val or hi > max_val:
            raise ScheduleParseError(
                f"Value out of range {min_val}-{max_val} in {expression!r}"
            )
        values.update(range(lo, hi + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse *expression*, raising ScheduleParseError when it is malformed."""
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ScheduleParseError(f"Invalid cron expression (need 5 fields): {expression!r}")

    dow = _parse_cron_field(parts[4], 0, 7, expression)
    if 7 in dow:
        dow = (dow - {7}) | {0}

    return CronSpec(
        expression=expression,
        minutes=_parse_cron_field(parts[0], 0, 59, expression),
        hours=_parse_cron_field(parts[1], 0, 23, expression),
        days_of_month=_parse_cron_field(parts[2], 1, 31, expression),
        months=_parse_cron_field(parts[3], 1, 12, expression),
        days_of_week=dow,
        dom_restricted=not parts[2].startswith("*"),
        dow_restricted=not parts[4].startswith("*"),
    )


def _zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleParseError(f"Unknown timezone {tz!r}") from exc


def next_cron_time(expression: str | CronSpec, after: float | None = None, tz: str = "UTC") -> float:
    """Return the first minute strictly after *after* that matches.

    Matching happens on wall-clock time in *tz*; the result is an epoch
    timestamp.
    """
    spec = expression if isinstance(expression, CronSpec) else parse_cron(expression)
    zone = _zone(tz)
    if after is None:
        after = time.time()

    local = datetime.fromtimestamp(after, tz=zone).replace(second=0, microsecond=0, tzinfo=None)
    # Move one minute forward so we don't match the current minute
    dt = local + timedelta(minutes=1)
    last_year = dt.year + _SEARCH_YEARS

    while dt.year <= last_year:
        if dt.month not in spec.months:
            if dt.month == 12:
                dt = dt.replace(year=dt.year + 1, month=1, day=1, hour=0, minute=0)
            else:
                dt = dt.replace(month=dt.month + 1, day=1, hour=0, minute=0)
            continue

        if not spec.matches_day(dt):
            dt = (dt + timedelta(days=1)).replace(hour=0, minute=0)
            continue

        if dt.hour not in spec.hours:
            dt = (dt + timedelta(hours=1)).replace(minute=0)
            continue

        if dt.minute not in spec.minutes:
            dt += timedelta(minutes=1)
            continue

        ts = dt.replace(tzinfo=zone).timestamp()
        if ts > after:
            return ts
        # Repeated wall-clock minute after a DST fall-back
        dt += timedelta(minutes=1)

    raise ScheduleParseError(f"Could not compute next run for cron: {spec.expression!r}")
