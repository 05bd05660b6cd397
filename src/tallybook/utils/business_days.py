"""Business-day calendar used to bound match searches.

Business days are Monday to Friday; holidays are not considered.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil.rrule import DAILY, MO, TU, WE, TH, FR, rrule

from tallybook.domain.entities import DateWindow

DEFAULT_BUSINESS_DAYS = 15
MIN_BUSINESS_DAYS = 5
WEEKEND_BUFFER = 1.4

END_OF_DAY = time(23, 59, 59, 999000)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def is_business_day(day: date | datetime) -> bool:
    """Return True for Monday through Friday."""
    return _as_date(day).weekday() < 5


def count_business_days(start: date | datetime, end: date | datetime) -> int:
    """Count business days between two dates, both ends included.

    Argument order does not matter.
    """
    start, end = _as_date(start), _as_date(end)
    if start > end:
        start, end = end, start
    if start == end:
        return 1 if is_business_day(start) else 0
    days = rrule(
        DAILY,
        dtstart=datetime.combine(start, time.min),
        until=datetime.combine(end, time.min),
        byweekday=(MO, TU, WE, TH, FR),
    )
    return days.count()


def normalize_business_days(value) -> int:
    """Return the requested number of business days, or the default when unusable."""
    if value is None or isinstance(value, bool):
        return DEFAULT_BUSINESS_DAYS
    try:
        days = int(value)
    except (TypeError, ValueError):
        return DEFAULT_BUSINESS_DAYS
    return days if days > 0 else DEFAULT_BUSINESS_DAYS


def window_around(reference: date | datetime, business_days: Optional[int] = None) -> DateWindow:
    """Compute a symmetric window of business days around a reference date.

    The window spans at least ``max(business_days, 5)`` business days on each
    side of ``reference``, counted inclusively. ``start`` is at the start of
    its day and ``end`` at the last millisecond of its day.

    Args:
        reference: Center of the window
        business_days: Business days on each side (defaults to 15)

    Returns:
        DateWindow
    """
    reference_day = _as_date(reference)
    days = normalize_business_days(business_days)
    minimum = max(days, MIN_BUSINESS_DAYS)
    buffer = timedelta(days=math.ceil(minimum * WEEKEND_BUFFER))

    start = reference_day - buffer
    while count_business_days(start, reference_day) < minimum:
        start -= timedelta(days=1)

    end = reference_day + buffer
    while count_business_days(reference_day, end) < minimum:
        end += timedelta(days=1)

    return DateWindow(
        start=datetime.combine(start, time.min),
        end=datetime.combine(end, END_OF_DAY),
        business_days=days,
        reference=reference_day,
    )
