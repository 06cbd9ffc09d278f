"""Timestamp utilities for UTC handling and datetime parsing.

All timestamps in the service are timezone-aware UTC. The database stores
them as fixed-width ISO 8601 strings with microseconds, so lexical order
equals chronological order.
"""

from datetime import datetime, timezone
from typing import Optional, Union

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Example:
        >>> utc_now().tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware datetimes are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO 8601 datetime string (or pass through a datetime) to UTC.

    Accepts "2025-11-04T12:00:00Z", "2025-11-04T12:00:00+05:30",
    "2025-11-04T12:00:00.123456Z" and date-only "2025-11-04".

    Args:
        value: ISO 8601 string, datetime, or None

    Returns:
        Timezone-aware datetime in UTC, or None if the input is empty or unparseable

    Example:
        >>> parse_iso_datetime("2025-11-04T12:00:00Z").hour
        12
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not value.strip():
        return None

    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(normalized))
    except ValueError:
        return None


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for database storage.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        Fixed-width ISO 8601 string with microseconds and 'Z' suffix, or None

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000000Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None
    return dt_utc.strftime(STORAGE_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a value written by ``format_timestamp`` back to a UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, STORAGE_FORMAT).replace(tzinfo=timezone.utc)
