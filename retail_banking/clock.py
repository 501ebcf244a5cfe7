"""
Clock Module

Injectable time source. Engines never call datetime.now() directly so that
limit windows, due dates and maturity can be exercised deterministically.
"""

import calendar
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock returning timezone-aware UTC datetimes"""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Production clock backed by the system time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """
    Test clock with controlled time

    now() returns the same value until advance() or set_time() is called.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._current = start or datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
        if self._current.tzinfo is None:
            self._current = self._current.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self._current = when

    def advance(self, days: int = 0, seconds: int = 0) -> datetime:
        """Move the clock forward and return the new time"""
        self._current = self._current + timedelta(days=days, seconds=seconds)
        return self._current


def add_months(start: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping the day to the target month's end"""
    month = start.month - 1 + months
    year = start.year + month // 12
    month = month % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)
