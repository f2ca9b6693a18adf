"""
Injectable time source.

Basket stamps (``sent_at``, ``received_at``, ``closed_at``), date-based
order numbers and aging all read the time from a ``Clock`` handed to the
service.  ``SystemClock`` is the only place that reads the system time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """``now()`` returns a timezone-aware UTC ``datetime``."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock pinned to an instant, for tests and replays.

    Time only moves when ``advance`` or ``set_time`` is called, so a basket
    aged by N days is set up with ``advance(days=N)``.
    """

    def __init__(self, fixed_time: datetime):
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = fixed_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time.astimezone(timezone.utc)

    def advance(self, *, days: int = 0, seconds: int = 0) -> None:
        self._current += timedelta(days=days, seconds=seconds)
