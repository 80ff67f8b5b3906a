"""
UTC time helpers.

The store keeps every timestamp as an ISO-8601 UTC string; the upstream API
reports ``last_modified`` as epoch milliseconds. Everything in between is a
timezone-aware ``datetime``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage, or pass ``None`` through."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 string back into an aware datetime."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    """Convert upstream epoch-millisecond timestamps.

    Zero and ``None`` both mean "unknown" upstream.
    """
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Inverse of ``from_epoch_ms``."""
    return int(ensure_utc(dt).timestamp() * 1000)
