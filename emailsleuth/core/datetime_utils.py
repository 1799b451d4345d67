"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes so cached timestamps compare cleanly
regardless of where they were produced.

Usage:
    from emailsleuth.core.datetime_utils import utc_now, is_older_than

    stored_at = utc_now()
    if is_older_than(stored_at, timedelta(hours=1)):
        recompute()
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def is_older_than(stored_at: datetime, ttl: timedelta, now: datetime | None = None) -> bool:
    """Check if a timestamp is at least ``ttl`` in the past.

    Args:
        stored_at: Timestamp the value was recorded (naive UTC)
        ttl: Maximum age
        now: Reference time, defaults to utc_now()

    Returns:
        True if the value has expired
    """
    reference = now if now is not None else utc_now()
    return reference - stored_at >= ttl


def epoch_millis(now: datetime | None = None) -> int:
    """Milliseconds since the Unix epoch for a naive UTC datetime."""
    reference = now if now is not None else utc_now()
    return int(reference.replace(tzinfo=UTC).timestamp() * 1000)
