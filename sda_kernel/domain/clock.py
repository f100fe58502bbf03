"""
Injectable time source.

Eligibility, drawdown and claim code take the current instant from a
``Clock`` passed in by the caller; nothing in the kernel reads the system
time directly.  Instants are always timezone-aware UTC; conversion to an
organization's local date happens in ``sda_kernel.domain.eligibility``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current UTC instant."""

    @abstractmethod
    def now_utc(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when a test moves it.

    Args:
        instant: Starting point.  Must be timezone-aware; it is normalized
            to UTC.
    """

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware instant")
        self._instant = instant.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._instant

    def advance(self, seconds: float) -> datetime:
        """Move forward by ``seconds`` and return the new instant."""
        self._instant += timedelta(seconds=seconds)
        return self._instant
