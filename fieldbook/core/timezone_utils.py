"""
Timezone and wall-clock helpers.

Booking dates and times are wall-clock values in the facility timezone;
deadlines and audit timestamps are stored as aware UTC datetimes.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytz

MINUTES_PER_DAY = 24 * 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_facility_timezone(tz_name: str) -> pytz.BaseTzInfo:
    return pytz.timezone(tz_name)


def time_to_minutes(value: time, *, is_end: bool = False) -> int:
    """
    Minutes after midnight for a wall-clock time.

    An end time of 00:00 means the end of the day.
    """
    minutes = value.hour * 60 + value.minute
    if is_end and minutes == 0:
        return MINUTES_PER_DAY
    return minutes


def minutes_to_time(minutes: int) -> time:
    """Inverse of time_to_minutes; 1440 maps back to 00:00."""
    if minutes >= MINUTES_PER_DAY:
        return time(0, 0)
    return time(minutes // 60, minutes % 60)


def format_minutes(minutes: int) -> str:
    """Render minutes after midnight as HH:MM (end of day is 24:00)."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def wall_clock_to_utc(booking_date: date, minutes: int, tz_name: str) -> datetime:
    """Convert a facility-local date plus minute offset into an aware UTC datetime."""
    tz = get_facility_timezone(tz_name)
    local_midnight = tz.localize(datetime.combine(booking_date, time(0, 0)))
    return (local_midnight + timedelta(minutes=minutes)).astimezone(timezone.utc)


def facility_today(tz_name: str, now: datetime) -> date:
    """Calendar date in the facility timezone at the given instant."""
    return ensure_utc(now).astimezone(get_facility_timezone(tz_name)).date()
