"""Datetime helpers for timezone-aware comparisons.

SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns, so
every comparison against "now" goes through ``ensure_utc``.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
