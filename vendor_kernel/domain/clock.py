"""
Clock -- injectable time source.

Services receive a Clock through their constructor so that every timestamp
written to a history entry, an approval record or a deletion marker is
reproducible in tests.  Domain functions take ``now`` as an argument and
never read the clock themselves.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` returns a timezone-aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock.  Time only moves when the test moves it.

    Naive datetimes passed in are taken to be UTC.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = self._as_utc(fixed_time or DEFAULT_TEST_TIME)

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = self._as_utc(time)

    def advance(self, seconds: float = 1, *, days: int = 0) -> None:
        self._current += timedelta(days=days, seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance()
        return self._current
