from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional

UTC = dt.timezone.utc

# Fixed English names so the day marker does not depend on the process locale
_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def now_utc() -> dt.datetime:
    return dt.datetime.now(UTC)


def to_local(value: dt.datetime, tz: Optional[dt.tzinfo] = None) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    if tz is None:
        return value.astimezone()
    return value.astimezone(tz)


def day_string(day: dt.date) -> str:
    """Canonical day marker, e.g. ``"Tue Jan 02 2024"``."""
    return f"{_WEEKDAYS[day.weekday()]} {_MONTHS[day.month - 1]} {day.day:02d} {day.year:04d}"


def iso_week_number(day: dt.date) -> int:
    """ISO-8601 week number: weeks start on Monday, week 1 holds the year's first Thursday.

    Dates in late December can belong to week 1 of the next year and dates in
    early January to week 52/53 of the previous one.
    """
    return day.isocalendar()[1]


@dataclass(frozen=True)
class CalendarMarkers:
    day: str
    week: int
    month: int  # zero-based, January == 0
    year: int

    @classmethod
    def for_date(cls, day: dt.date) -> "CalendarMarkers":
        return cls(day=day_string(day), week=iso_week_number(day), month=day.month - 1, year=day.year)

    @classmethod
    def for_instant(cls, now: dt.datetime, tz: Optional[dt.tzinfo] = None) -> "CalendarMarkers":
        return cls.for_date(to_local(now, tz).date())
