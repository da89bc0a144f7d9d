"""
Datetime utilities for client dedupe services.
"""
from datetime import datetime, timezone
from typing import Optional


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a stored timestamp (ISO string or datetime) into an aware datetime.

    Accepts the 'Z' suffix and the space-separated form SQLite's
    CURRENT_TIMESTAMP produces.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return make_aware(value)
    text = str(value).strip().replace('Z', '+00:00')
    return make_aware(datetime.fromisoformat(text))


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
