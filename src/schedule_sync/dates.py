"""Calendar date helpers.

Dates are local-calendar ``YYYY-MM-DD`` strings. "Today" is read once when
asked for and never recomputed behind the caller's back.
"""

import re
from datetime import date, datetime, timedelta

from src.schedule_sync.errors import InvalidDateError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def today_local() -> str:
    """Today's date in the local time zone as YYYY-MM-DD."""
    return date.today().isoformat()


def parse_calendar_date(value: str | date) -> str:
    """Validate and normalize a calendar date.

    Args:
        value: A ``datetime.date`` or a ``YYYY-MM-DD`` string.

    Returns:
        The date as a ``YYYY-MM-DD`` string.

    Raises:
        InvalidDateError: If the value is not a real calendar date.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise InvalidDateError(f"Expected a date string, got {type(value).__name__}")

    raw = value.strip()
    if not _DATE_RE.match(raw):
        raise InvalidDateError(f"Invalid calendar date {value!r}, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(raw).isoformat()
    except ValueError as e:
        raise InvalidDateError(f"Invalid calendar date {value!r}: {e}") from e


def shift_date(value: str | date, days: int) -> str:
    """Return the date ``days`` away from ``value`` (negative for earlier)."""
    current = date.fromisoformat(parse_calendar_date(value))
    return (current + timedelta(days=days)).isoformat()
