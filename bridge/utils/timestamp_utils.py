"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import date, datetime, timezone
from typing import Optional, Union

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_datetime(timestamp: Optional[Union[int, float]] = None) -> datetime:
    """Convert timestamp to an aware UTC datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse an ISO string, unix timestamp or datetime into an aware UTC datetime.

    Args:
        value: Raw timestamp as found in stored records

    Returns:
        Parsed datetime, or None when the value is empty or unparseable
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return to_datetime(value)
    try:
        return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except ValueError:
        return None


def utc_day(value: datetime) -> date:
    """Calendar day of a timestamp in UTC."""
    return ensure_utc(value).date()


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY
