"""Timestamp utilities for arkive-sync.

Provides the clock used by the sync layer and conversions between datetime
values and the ISO-8601 strings carried on the wire.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Get the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Union[datetime, date]) -> str:
    """Format a datetime (or date) as an ISO-8601 string.

    Aware datetimes are converted to UTC and written with a trailing ``Z``,
    matching what browsers produce. Naive datetimes are assumed to be UTC.
    Plain dates keep their ``YYYY-MM-DD`` form.

    Args:
        value: datetime or date to format

    Returns:
        ISO-8601 string
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        utc_value = value.astimezone(timezone.utc)
        return utc_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value.isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string into a datetime.

    Accepts the ``Z`` suffix and date-only strings. Results without an offset
    are treated as UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if not isinstance(value, str):
        raise ValueError(f"expected string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch(value: Union[datetime, date, str, None]) -> Optional[float]:
    """Convert a temporal value to seconds since the epoch for sorting.

    Returns None for values that are missing or cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = parse_iso(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()
    return None
