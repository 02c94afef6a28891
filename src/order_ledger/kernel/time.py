"""
Clock abstraction for event timestamps

Timestamps are stamped onto events at append time and later read back as
rollback criteria, so they must be injectable for deterministic tests and
always timezone-aware.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for clocks - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class SystemClock:
    """Production clock backed by the system time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Controllable clock for deterministic tests

    Time only moves when the test moves it.
    """

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._current_time = ensure_aware(
            initial_time or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        )

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = ensure_aware(dt)

    def advance(self, **delta: float) -> datetime:
        """Advance by a timedelta expressed as keyword arguments (seconds=5, days=1)"""
        self._current_time += timedelta(**delta)
        return self._current_time


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so comparisons never mix kinds"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_instant(value: str | datetime) -> datetime:
    """
    Parse an ISO-8601 string into an aware datetime

    Accepts the trailing "Z" designator used by JavaScript clients.

    Raises:
        ValueError: If the value does not describe a valid instant
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not an ISO-8601 timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))
