"""
Datetime utilities for the guest dashboard services.
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
    Parse a message timestamp (ISO 8601, "Z" suffix allowed) to an aware datetime.

    Returns None for missing or unparseable values.
    """
    if isinstance(value, datetime):
        return make_aware(value)
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return make_aware(datetime.fromisoformat(text))
    except ValueError:
        return None
