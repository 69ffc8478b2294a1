"""Local-date helpers. Every datetime in the logging layer is naive local time."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Callable

Clock = Callable[[], datetime]


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def date_key(day: date) -> str:
    """YYYY-MM-DD in local time, never UTC-shifted."""
    return day.strftime("%Y-%m-%d")


def month_key(day: date) -> str:
    return day.strftime("%Y-%m")


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


def minutes_between(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / 60
