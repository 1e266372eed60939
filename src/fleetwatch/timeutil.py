"""UTC time helpers shared by the ledger, status engine and analytics."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

type Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_day(value: datetime) -> str:
    """Calendar day (UTC) of a timestamp as ``YYYY-MM-DD``."""
    return as_utc(value).date().isoformat()


def elapsed_ms(since: datetime, now: datetime) -> int:
    """Milliseconds from ``since`` to ``now``, never negative."""
    delta = as_utc(now) - as_utc(since)
    return max(0, int(delta.total_seconds() * 1000))
