"""
Domain time utilities (pure).

Centralized timestamp validation helper plus the clock seam used by services.

Behavior and error messages must remain consistent across the domain model.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


def require_utc_timestamp(name: str, value: datetime) -> None:
    """
    Enforces the requirement that stored timestamps are UTC.

    Invariants:
    - Timestamps must be timezone-aware.
    - Timestamps must have UTC offset 0.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


class Clock(Protocol):
    """Source of the current UTC time. Injected so tests can pin 'now'."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def add_business_days(start: datetime, days: int) -> datetime:
    """
    Add `days` business days (Mon-Fri) to `start`.

    Counting starts on the day after `start` and skips Saturdays and Sundays.
    Zero days returns `start` unchanged.
    """

    if days < 0:
        raise ValueError("days must be >= 0")

    current = start
    remaining = days
    while remaining > 0:
        current = current + timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


def utc_today(clock: Clock) -> date:
    return clock.now().astimezone(timezone.utc).date()
