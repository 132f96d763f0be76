"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that engine, scheduler and
    service code never call ``datetime.now()`` directly.  Escalation
    thresholds are measured in hours; tests must be able to jump a day
    ahead without sleeping.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time must receive a Clock instance
        via constructor injection.

    Guarantees:
        ``now()`` returns a timezone-aware ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        ``now()`` returns the same value on repeated calls until
        ``advance()``, ``advance_hours()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def advance_hours(self, hours: int | float) -> None:
        """Advance the clock by whole or fractional hours."""
        self._advance_seconds += int(hours * 3600)
