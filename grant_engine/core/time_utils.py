"""
Time utilities for analysis timestamps and deadline arithmetic.
All timestamps produced by the engine are timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dateparser


def utcnow() -> datetime:
    """
    Get current datetime in UTC.

    Returns:
        datetime: Current time with UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date_maybe(text: str) -> Optional[datetime]:
    """
    Attempt to parse a date string, returning None on failure.

    ISO 8601 strings are parsed strictly; anything else goes through
    dateutil.parser with day-first=True so "03/04/2025" reads as 3 April.

    Examples:
        >>> parse_date_maybe("10 April 2024 11:00am")
        datetime.datetime(2024, 4, 10, 11, 0, tzinfo=datetime.timezone.utc)
        >>> parse_date_maybe("not a date") is None
        True
    """
    if not text:
        return None
    text = text.strip()
    if not text:
        return None

    # ISO first: dayfirst would read "2025-03-05" as 3 May
    try:
        return ensure_aware(dateparser.isoparse(text))
    except (ValueError, OverflowError):
        pass

    try:
        return ensure_aware(dateparser.parse(text, dayfirst=True))
    except (ValueError, TypeError, OverflowError):
        return None


def days_before_deadline(submitted_at: Optional[datetime],
                         deadline: Optional[datetime]) -> Optional[float]:
    """
    Days between submission and deadline (negative when late).

    Returns None when either date is unknown.
    """
    if not submitted_at or not deadline:
        return None
    delta = ensure_aware(deadline) - ensure_aware(submitted_at)
    return delta.total_seconds() / 86400.0
