"""Calendar-day and minute arithmetic shared by the journey and connection code."""

import math
from datetime import date, datetime, time, timedelta


def calendar_day(value: date | datetime) -> date:
    """Strip the time of day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def day_bounds(value: date | datetime) -> tuple[datetime, datetime]:
    """[midnight, next midnight) of the calendar day containing value."""
    start = datetime.combine(calendar_day(value), time.min)
    return start, start + timedelta(days=1)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def round_minutes(seconds: float) -> int:
    """Round to the nearest whole minute, halves rounding up (+0.5 min -> +1)."""
    return round_half_up(seconds / 60)


def minutes_between(later: datetime, earlier: datetime) -> int:
    return round_minutes((later - earlier).total_seconds())
