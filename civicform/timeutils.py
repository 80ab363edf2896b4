"""
UTC time helpers shared by models and services.

SQLite hands back naive datetimes even for timezone-aware columns; everything
leaving the service goes through as_utc() so clients always see an offset.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values, convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_utc(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a Z suffix, e.g. 2024-01-15T12:00:00.000Z."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_millis(value: datetime) -> int:
    return int(as_utc(value).timestamp() * 1000)
