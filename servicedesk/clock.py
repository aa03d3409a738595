"""Time source for all deadline math.

Services never read the wall clock directly; they take a ``Clock`` so that
SLA evaluation stays a pure function of (ticket facts, SLA definition, now).
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency; overridden in tests with a frozen clock."""
    return system_clock
