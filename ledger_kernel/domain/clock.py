"""
Clock -- where services get "now" and "today".

Domain and service code never call ``datetime.now()`` or ``date.today()``.
The accrual scheduler asks the clock for today's date to tell a backfill
from a regular run and to refuse runs for days that have not happened yet.
Times are UTC; a ledger day is a UTC calendar day.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone

# set_date() lands on noon UTC
_NOON = time(12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests and replays: stands still until it is moved.

    Starts at noon UTC on Monday 2024-01-01 unless ``fixed_time`` says
    otherwise.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime.combine(date(2024, 1, 1), _NOON)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def set_date(self, day: date) -> None:
        self.set_time(datetime.combine(day, _NOON))
