"""
Clock -- Injectable time source for the approval kernel.

Responsibility:
    Delegation windows, escalation and auto-approval timers, due dates and
    audit timestamps are all evaluated against a ``Clock`` passed in by the
    caller.  Nothing below the service layer reads the wall clock itself.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only class here that touches
    the operating system.

Invariants enforced:
    - Every clock returns timezone-aware datetimes.

Failure modes:
    - ``SequentialClock([])`` raises ValueError.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of "now" for services, handed in through the constructor."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and sweeps replayed at a fixed instant.

    Time only moves when the test moves it: ``advance``/``advance_hours``
    shift it forward, ``set_time`` jumps, ``tick`` steps one second and
    returns the new value.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_EPOCH

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        self._current += timedelta(hours=hours)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current


class SequentialClock(Clock):
    """Hands out the given instants in order, then keeps returning the last one."""

    def __init__(self, times: list[datetime]):
        if not times:
            raise ValueError("SequentialClock requires at least one time")
        self._times = tuple(times)
        self._calls = 0

    def now(self) -> datetime:
        index = min(self._calls, len(self._times) - 1)
        self._calls += 1
        return self._times[index]
