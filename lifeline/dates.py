"""Calendar helpers shared by the models and the forecast engine."""

import calendar
from datetime import date, datetime, time
from typing import Optional, Union

DateLike = Union[date, datetime]

SECONDS_PER_DAY = 24 * 60 * 60


def as_date(value: DateLike) -> date:
    """Normalize a timestamp to its calendar day (time of day is dropped)."""
    if isinstance(value, datetime):
        return value.date()
    return value


def start_of_day(day: DateLike, tzinfo=None) -> datetime:
    """Midnight at the start of the given day."""
    return datetime.combine(as_date(day), time.min, tzinfo=tzinfo)


def weekday_from_sunday(day: DateLike) -> int:
    """Day of week with 0=Sunday .. 6=Saturday."""
    return as_date(day).isoweekday() % 7


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(day: DateLike, months: int, day_of_month: Optional[int] = None) -> date:
    """
    Move a date by a number of months.

    The day of month (the given one, or the original date's) is clamped
    to the length of the target month, so Jan 31 + 1 month is Feb 28/29.
    """
    day = as_date(day)
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    wanted = day_of_month if day_of_month is not None else day.day
    return date(year, month, min(wanted, days_in_month(year, month)))


def to_local_naive(value: datetime) -> datetime:
    """
    Convert an aware timestamp to naive local time.

    Naive timestamps are taken to be local already and returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
