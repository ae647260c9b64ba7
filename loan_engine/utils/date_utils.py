"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all timestamps)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(from_date: date, months: int, day: int | None = None) -> date:
    """
    Move a date by whole calendar months.

    The day of month is kept (or replaced by `day` when given) and clamped to
    the length of the target month, so Jan 31 + 1 month is Feb 28/29.
    """
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    target_day = day if day is not None else from_date.day
    return from_date.replace(year=year, month=month, day=min(target_day, last_day))


def years_between(start: datetime, end: datetime) -> float:
    """Elapsed time in 365-day years"""
    return (end - start).total_seconds() / (365 * 24 * 60 * 60)
