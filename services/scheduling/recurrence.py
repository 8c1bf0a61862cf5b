"""
Recurrence math.

The n-th occurrence of a schedule is a pure function of its start time,
pattern, timezone and n, so the next run never depends on when the
driver loop happened to wake up. Arithmetic is done on local wall-clock
time (a 09:00 daily post stays at 09:00 across DST changes).
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.errors import ValidationError

from .models import RecurrenceType, RecurringPattern


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {name}") from None


def localize(value: datetime, tz_name: str) -> datetime:
    """Interpret naive datetimes in `tz_name`; always return an aware UTC datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_timezone(tz_name))
    return value.astimezone(timezone.utc)


def _add_months(local: datetime, months: int, day: int) -> datetime:
    month_index = local.month - 1 + months
    year = local.year + month_index // 12
    month = month_index % 12 + 1
    day = min(day, calendar.monthrange(year, month)[1])
    return local.replace(year=year, month=month, day=day)


def _weekly_on_days(local: datetime, pattern: RecurringPattern, n: int) -> datetime:
    days = sorted(set(pattern.days_of_week))
    start_dow = (local.weekday() + 1) % 7  # 0 = Sunday
    week_start = local - timedelta(days=start_dow)

    first_week = [d for d in days if d >= start_dow]
    if n < len(first_week):
        return week_start + timedelta(days=first_week[n])

    week_number, index = divmod(n - len(first_week), len(days))
    return week_start + timedelta(weeks=(week_number + 1) * pattern.interval, days=days[index])


def nth_occurrence(
    start: datetime,
    pattern: Optional[RecurringPattern],
    n: int,
    tz_name: str = "UTC",
) -> Optional[datetime]:
    """
    Occurrence number `n` (0-based) in UTC, or None once the pattern is exhausted.

    A schedule without a pattern has exactly one occurrence: `start`.
    """
    if n < 0:
        raise ValueError("occurrence index cannot be negative")
    start = localize(start, tz_name)
    if pattern is None:
        return start if n == 0 else None
    if pattern.max_occurrences is not None and n >= pattern.max_occurrences:
        return None

    tz = resolve_timezone(tz_name)
    local = start.astimezone(tz).replace(tzinfo=None)

    if pattern.type == RecurrenceType.DAILY:
        candidate = local + timedelta(days=n * pattern.interval)
    elif pattern.type == RecurrenceType.WEEKLY:
        if pattern.days_of_week:
            candidate = _weekly_on_days(local, pattern, n)
        else:
            candidate = local + timedelta(weeks=n * pattern.interval)
    else:
        day = pattern.day_of_month or local.day
        shift = pattern.interval if _add_months(local, 0, day) < local else 0
        candidate = _add_months(local, shift + n * pattern.interval, day)

    occurrence = candidate.replace(tzinfo=tz).astimezone(timezone.utc)
    if pattern.end_date is not None and occurrence > localize(pattern.end_date, tz_name):
        return None
    return occurrence


def upcoming_occurrences(
    start: datetime,
    pattern: Optional[RecurringPattern],
    tz_name: str = "UTC",
    first: int = 0,
    count: int = 5,
) -> list[datetime]:
    """Preview up to `count` occurrences beginning at index `first`."""
    occurrences = []
    for n in range(first, first + count):
        occurrence = nth_occurrence(start, pattern, n, tz_name)
        if occurrence is None:
            break
        occurrences.append(occurrence)
    return occurrences
