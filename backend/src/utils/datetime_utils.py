"""
Datetime utilities for consistent timezone handling across the application.

All business logic runs in the service center's local time. Appointment dates,
times and derived windows are stored naive and interpreted as center time;
audit timestamps are timezone-aware.
"""

import logging
from datetime import datetime, timezone, timedelta, date, time
from typing import Optional

from core.config import SERVICE_CENTER_TIMEZONE_OFFSET_HOURS

logger = logging.getLogger(__name__)

CENTER_TZ = timezone(timedelta(hours=SERVICE_CENTER_TIMEZONE_OFFSET_HOURS))

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def center_now() -> datetime:
    """
    Get current service center datetime.

    Returns:
        Current datetime with the center's timezone
    """
    return datetime.now(CENTER_TZ)


def ensure_center(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in center time.

    Args:
        dt: Datetime to localize

    Returns:
        Timezone-aware datetime in center time, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # If naive, assume it's already in center time and localize it
        return dt.replace(tzinfo=CENTER_TZ)
    else:
        return dt.astimezone(CENTER_TZ)


def to_center_naive(dt: datetime) -> datetime:
    """Convert any datetime to a naive datetime expressed in center time."""
    localized = ensure_center(dt)
    assert localized is not None
    return localized.replace(tzinfo=None)


def combine_local(day: date, at: time) -> datetime:
    """Combine a scheduled date and time into a naive center-time datetime."""
    return datetime.combine(day, at.replace(tzinfo=None))


def hours_between(start: datetime, end: datetime) -> float:
    """
    Hours from start to end (negative when end is earlier).

    Naive values are treated as center time so that stored appointment times
    and an aware "now" can be compared directly.
    """
    start_aware = ensure_center(start)
    end_aware = ensure_center(end)
    assert start_aware is not None and end_aware is not None
    return (end_aware - start_aware).total_seconds() / 3600


def weekday_name(day: date) -> str:
    """Lower-case English weekday name, e.g. 'monday'."""
    return WEEKDAY_NAMES[day.weekday()]


def parse_date_string(date_str: str) -> date:
    """
    Parse date string in YYYY-MM-DD format.

    Raises:
        ValueError: If the string is not a valid date
    """
    return datetime.strptime(date_str, '%Y-%m-%d').date()


def parse_time_string(time_str: str) -> time:
    """
    Parse time string in HH:MM (or HH:MM:SS) format.

    Raises:
        ValueError: If the string is not a valid time
    """
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(time_str, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time format: {time_str}")


def format_time(value: time) -> str:
    """Format a time as HH:MM."""
    return value.strftime('%H:%M')
