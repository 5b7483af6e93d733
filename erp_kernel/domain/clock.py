"""
Clock -- injectable time source.

Approval history timestamps, ``lastApprovedAt`` and notification
``createdAt`` are all taken from a ``Clock`` handed to the services, never
from ``datetime.now()`` in domain or service code.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware 'now' for services."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at ``start`` until moved with ``advance()``.

    ``now()`` is stable across calls, so every timestamp written inside one
    decision compares equal.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, by: timedelta | int = 1) -> datetime:
        """Move forward by ``by`` (a ``timedelta`` or whole seconds)."""
        if not isinstance(by, timedelta):
            by = timedelta(seconds=by)
        if by < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._now += by
        return self._now
