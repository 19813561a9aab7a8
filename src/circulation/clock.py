"""Time sources for the lending engine.

All date arithmetic goes through a ``Clock`` so due dates and overdue
computations can be pinned in tests.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, current: Optional[datetime] = None):
        self.current = current or datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.current = self.current + timedelta(days=days, hours=hours)
