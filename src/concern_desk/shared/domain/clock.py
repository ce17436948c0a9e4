"""
Clock
=====

Time source abstraction. Escalation thresholds, cooldowns and lifecycle
timestamps all read "now" from an injected clock so sweeps can be replayed
at fixed instants in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock pinned to an instant, moved forward explicitly."""

    def __init__(self, instant: Optional[datetime] = None):
        self._instant = ensure_utc(instant) if instant else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, **delta) -> datetime:
        """Move the clock forward by ``timedelta(**delta)`` and return the new instant."""
        self._instant = self._instant + timedelta(**delta)
        return self._instant


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from ``start`` to ``end``."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600
