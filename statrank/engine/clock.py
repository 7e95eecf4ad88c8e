"""
statrank.engine.clock — Time Source & Bucketing
================================================

Snapshot buckets and delta windows both depend on "now", so the engine
never calls ``datetime.now`` directly.  It receives a :class:`Clock`.

Buckets are aligned to UTC midnight: with ``hours=6`` the grid is
00:00, 06:00, 12:00, 18:00.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol

from statrank.constants import UPDATE_INTERVAL_HOURS


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """A clock that only moves when told to (tests, replays)."""

    def __init__(self, at: datetime) -> None:
        self._at = _aware(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = _aware(at)

    def advance(self, **delta: float) -> datetime:
        self._at += timedelta(**delta)
        return self._at


def _aware(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts.astimezone(UTC)


def truncate_to_bucket(ts: datetime, hours: int) -> datetime:
    """Floor *ts* to the start of its *hours*-wide bucket (UTC)."""
    if hours < 1 or 24 % hours:
        raise ValueError(f"Bucket width must divide 24 hours, got {hours}")
    ts = _aware(ts)
    return ts.replace(hour=ts.hour - ts.hour % hours, minute=0, second=0, microsecond=0)


def interval_hours(name: str) -> int:
    """Bucket width for a configured update interval name."""
    try:
        return UPDATE_INTERVAL_HOURS[name]
    except KeyError:
        raise ValueError(
            f"Unknown update interval {name!r}; "
            f"expected one of {', '.join(UPDATE_INTERVAL_HOURS)}"
        ) from None
