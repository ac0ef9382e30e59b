"""
Date arithmetic and display helpers.

All comparisons happen at day granularity: datetimes are reduced to
their calendar date before any subtraction.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union


DateLike = Union[date, datetime, str, None]


class Urgency(Enum):
    """Urgency bucket for a milestone countdown."""

    GREEN = "green"  # 15+ days away
    YELLOW = "yellow"  # 4-14 days away
    RED = "red"  # 0-3 days away
    GRAY = "gray"  # Already passed


# Upper bounds (inclusive) for the countdown buckets
RED_WITHIN_DAYS = 3
YELLOW_WITHIN_DAYS = 14


def to_date(value: DateLike) -> Optional[date]:
    """
    Normalize a date-like value to a calendar date.

    Accepts date, datetime (time of day is dropped) or an ISO string.
    Timestamps such as "2025-01-01T10:00:00Z" are truncated to the date.

    Returns:
        The date, or None for None / empty string

    Raises:
        ValueError: If the value cannot be read as a date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return date.fromisoformat(text[:10])
    raise ValueError(f"Not a date: {value!r}")


def add_days(day: date, days: int) -> date:
    """Add a number of days to a date."""
    return day + timedelta(days=days)


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole days from start to end (positive = end is in the future)."""
    return (to_date(end) - to_date(start)).days


def urgency_for(days_away: int) -> Urgency:
    """
    Bucket a countdown into an urgency level.

    gray if past, red at 3 days or less, yellow at 14 or less, else green.
    """
    if days_away < 0:
        return Urgency.GRAY
    if days_away <= RED_WITHIN_DAYS:
        return Urgency.RED
    if days_away <= YELLOW_WITHIN_DAYS:
        return Urgency.YELLOW
    return Urgency.GREEN


def countdown_text(days_away: int) -> str:
    """Human countdown, e.g. "Today", "Tomorrow", "3 days ago"."""
    if days_away == 0:
        return "Today"
    if days_away == 1:
        return "Tomorrow"
    if days_away == -1:
        return "1 day ago"
    if days_away < 0:
        return f"{abs(days_away)} days ago"
    return f"{days_away} days"


def format_date(value: DateLike) -> str:
    """Format as "Mar 15, 2026"; missing dates render as an em dash."""
    day = to_date(value)
    if day is None:
        return "—"
    return f"{day.strftime('%b')} {day.day}, {day.year}"


def to_input_date(value: DateLike) -> str:
    """Format as "YYYY-MM-DD" for form inputs, or "" when missing."""
    day = to_date(value)
    return day.isoformat() if day else ""


def format_currency(value: Optional[float]) -> str:
    """Format as "$1,234,567" with no cents."""
    if value is None:
        return "—"
    return f"${value:,.0f}"


def format_percent(value: float) -> str:
    """Format a decimal fraction as a percent (0.03 -> "3%", 0.025 -> "2.5%")."""
    text = f"{value * 100:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text}%"
