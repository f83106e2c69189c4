"""
Injectable clock.

Every job reads "now" once per run from a Clock so date-threshold logic
(payment reminder days, expiry checkpoints, no-show windows) can be driven
deterministically in tests with FixedClock.
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, now: datetime):
        self._now = ensure_aware(now)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, now: datetime) -> None:
        self._now = ensure_aware(now)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes coming from storage as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_date(moment: datetime, tz_name: str = "UTC") -> date:
    """Calendar date of an instant in the given timezone."""
    return ensure_aware(moment).astimezone(ZoneInfo(tz_name)).date()


def elapsed_days(since: datetime, now: datetime) -> int:
    """Whole days elapsed between two instants (floored)."""
    return math.floor((ensure_aware(now) - ensure_aware(since)).total_seconds() / 86400)


def days_until_date(target: date, today: date) -> int:
    """Calendar days from today until target (negative once past)."""
    return (target - today).days


def days_until_ceil(target: datetime, now: datetime) -> int:
    """Days remaining until an instant, rounded up."""
    return math.ceil((ensure_aware(target) - ensure_aware(now)).total_seconds() / 86400)


def day_bounds(day: date, tz_name: str = "UTC") -> tuple:
    """Start (inclusive) and end (exclusive) instants of a calendar day."""
    start = datetime.combine(day, datetime.min.time(), tzinfo=ZoneInfo(tz_name))
    return start, start + timedelta(days=1)


def at_local_time(day: date, hhmm: str, tz_name: str = "UTC") -> datetime:
    """Instant of a wall-clock HH:MM on a calendar day in the given timezone."""
    hours, minutes = hhmm.split(":")[:2]
    return datetime.combine(day, time(int(hours), int(minutes)), tzinfo=ZoneInfo(tz_name))
