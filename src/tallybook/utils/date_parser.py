"""Date parsing utilities."""

from datetime import date, timedelta
from typing import Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta, MO

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
PERIODS = ("this-week", "this-month", "this-year", "last-week", "last-month", "last-year")


def _period_start(anchor: str, period: str, today: date) -> Optional[date]:
    """Return the first day of this/last/next week, month or year."""
    offsets = {"last": -1, "this": 0, "next": 1}
    step = offsets[anchor]
    if period == "week":
        return today + relativedelta(weekday=MO(-1)) + timedelta(weeks=step)
    if period == "month":
        return today.replace(day=1) + relativedelta(months=step)
    if period == "year":
        return today.replace(month=1, day=1) + relativedelta(years=step)
    return None


def parse_date(date_str: str, today: Optional[date] = None) -> date:
    """Parse a date string into a date object.

    Supports various formats including relative dates:
    - Absolute dates: "2024-01-15", "January 15, 2024", etc.
    - Relative dates: "today", "yesterday", "tomorrow"
    - Period starts: "last month", "this year", "next week"
    - Weekdays: "last friday"

    Args:
        date_str: Date string in various formats
        today: Reference day for relative dates (defaults to the current day)

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    text = date_str.strip().lower()
    today = today or date.today()

    fixed = {
        "today": today,
        "yesterday": today - timedelta(days=1),
        "tomorrow": today + timedelta(days=1),
    }
    if text in fixed:
        return fixed[text]

    anchor, _, period = text.partition(" ")
    if anchor in ("last", "this", "next") and period:
        start = _period_start(anchor, period, today)
        if start is not None:
            return start
        if anchor == "last" and period in WEEKDAYS:
            days_ago = (today.weekday() - WEEKDAYS.index(period)) % 7 or 7
            return today - timedelta(days=days_ago)

    try:
        return date_parser.parse(text).date()
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")


def get_date_range(period: str, today: Optional[date] = None) -> tuple[date, date]:
    """Get start and end dates for a named period.

    "this-*" periods end today; "last-*" periods cover the whole previous
    week, month or year.

    Args:
        period: One of PERIODS
        today: Reference day (defaults to the current day)

    Returns:
        Tuple of (start_date, end_date)

    Raises:
        ValueError: If period string is not recognized
    """
    name = period.strip().lower()
    today = today or date.today()
    anchor, _, unit = name.partition("-")
    if name not in PERIODS:
        raise ValueError(f"Unknown period: '{period}'. Supported periods: {', '.join(PERIODS)}")

    start = _period_start(anchor, unit, today)
    if anchor == "this":
        return start, today
    following = _period_start("this", unit, today)
    return start, following - timedelta(days=1)
