"""Time sources.

All engagement code asks a Clock for the current instant instead of calling
datetime directly, so cooldown windows can be tested without waiting.
Every instant handed out is timezone-aware UTC.
"""
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """Supplies the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant as an aware UTC datetime."""
        pass


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to.

    Used by tests and by replay tooling.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start) if start else datetime.now(timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = ensure_utc(value)

    def advance(self, delta: Optional[timedelta] = None, **kwargs) -> datetime:
        """Move the clock forward.

        Accepts either a timedelta or timedelta keyword arguments,
        e.g. advance(hours=5).

        Returns:
            The new current instant
        """
        step = delta if delta is not None else timedelta(**kwargs)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now = self._now + step
            return self._now
