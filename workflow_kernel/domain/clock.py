"""
Injectable time source for the workflow kernel.

Services and selectors never read the wall clock themselves: request
creation, history timestamps, notification timestamps and the overdue
cutoff all come from a ``Clock`` passed in by the caller.  Tests pass a
``DeterministicClock`` and move it explicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Fixed start for test clocks: a Saturday morning, well clear of DST edges.
DEFAULT_TEST_EPOCH = datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` must return an aware datetime in UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``rewind()`` exists so tests can simulate a host whose clock steps
    backwards between two approvals.
    """

    def __init__(self, start: datetime | None = None):
        if start is not None and start.tzinfo is None:
            raise ValueError("DeterministicClock requires an aware start time")
        self._current = start or DEFAULT_TEST_EPOCH

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: int = 0, *, hours: int = 0) -> None:
        self._current += timedelta(seconds=seconds, hours=hours)

    def rewind(self, seconds: int) -> None:
        self._current -= timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self._current
