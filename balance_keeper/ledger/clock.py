"""
Injected clock.

The ledger never reads the system clock directly. Components receive a
Clock and ask it for today's calendar day, which keeps status resolution
and look-ahead windows reproducible in tests.
"""

from datetime import date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def today(self) -> date:
        ...


class SystemClock:
    """Today's date in a configured time zone."""

    def __init__(self, timezone: str = "UTC"):
        self._zone = ZoneInfo(timezone)

    def today(self) -> date:
        return datetime.now(self._zone).date()


class FixedClock:
    """A clock that always reports the same day until moved."""

    def __init__(self, today: date):
        self._today = today

    def today(self) -> date:
        return self._today

    def set(self, today: date) -> None:
        self._today = today
