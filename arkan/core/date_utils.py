"""
Calendar helpers for month-bucketed finance calculations.
"""
import calendar
from datetime import date, datetime
from typing import List, Union

DateLike = Union[date, datetime]


def as_date(value: DateLike) -> date:
    """Normalise a datetime or date to a date."""
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(d: date, months: int) -> date:
    """Add (or subtract) calendar months, clamping the day to the target month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_key(d: DateLike) -> str:
    """YYYY-MM key for a date."""
    d = as_date(d)
    return f"{d.year:04d}-{d.month:02d}"


def first_of_month(d: DateLike) -> date:
    d = as_date(d)
    return date(d.year, d.month, 1)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_starts(now: DateLike, count: int) -> List[date]:
    """First day of each of `count` calendar months, starting with the month of `now`."""
    start = first_of_month(now)
    return [add_months(start, i) for i in range(count)]
