"""
Timezone conversion utilities.

All instants handed around the pipeline are timezone-aware UTC datetimes.
Wall-clock arithmetic (daily send times, local day boundaries) goes through
pytz so DST transitions are resolved by the tz database, never by fixed
offsets.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

import pytz

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime (naive datetimes are treated as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_timezone(tz_name: str | None):
    """Look up a pytz timezone, falling back to UTC for unknown or empty names."""
    if not tz_name:
        return pytz.UTC
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {tz_name!r}, falling back to UTC")
        return pytz.UTC


def localize(day: date, wall_time: time, tz_name: str | None) -> datetime:
    """
    Resolve a local wall-clock time on a given day to a UTC instant.

    Non-existent local times (the spring-forward gap) roll forward by the
    size of the gap, e.g. 02:30 on a DST start day becomes 03:30 local.
    Ambiguous times (the fall-back hour) resolve to the standard-time
    occurrence.
    """
    tz = get_timezone(tz_name)
    naive = datetime.combine(day, wall_time)
    local_dt = tz.normalize(tz.localize(naive, is_dst=False))
    return local_dt.astimezone(timezone.utc)


def next_send_time(
    send_time: time,
    tz_name: str | None,
    now: datetime | None = None,
) -> datetime:
    """
    Next instant at which send_time occurs in tz_name.

    If that wall-clock time has already passed today (local), the
    occurrence on the following local day is returned.

    Args:
        send_time: Local wall-clock time (e.g. time(8, 0))
        tz_name: IANA timezone (e.g. "America/Toronto")
        now: Reference instant (defaults to the current time)

    Returns:
        Aware UTC datetime
    """
    now = ensure_utc(now or utcnow())
    tz = get_timezone(tz_name)
    local_today = now.astimezone(tz).date()

    candidate = localize(local_today, send_time, tz_name)
    if candidate < now:
        candidate = localize(local_today + timedelta(days=1), send_time, tz_name)
    return candidate


def local_date(dt: datetime, tz_name: str | None) -> date:
    """Calendar date of an instant as seen in tz_name."""
    return ensure_utc(dt).astimezone(get_timezone(tz_name)).date()


def local_day_bounds(day: date, tz_name: str | None) -> tuple[datetime, datetime]:
    """
    UTC bounds [start, end) of a local calendar day.

    The span is 23 or 25 hours on DST transition days.
    """
    start = localize(day, time(0, 0), tz_name)
    end = localize(day + timedelta(days=1), time(0, 0), tz_name)
    return start, end


def format_time_in_timezone(utc_dt: datetime, tz_name: str | None) -> str:
    """Format just the local clock time, e.g. "9:30 AM"."""
    local_dt = ensure_utc(utc_dt).astimezone(get_timezone(tz_name))
    return local_dt.strftime("%I:%M %p").lstrip("0")


def format_date_in_timezone(
    utc_dt: datetime,
    tz_name: str | None,
) -> str:
    """
    Format a UTC datetime as just a date in the user's local timezone.

    Args:
        utc_dt: Datetime in UTC (naive datetimes treated as UTC)
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        Formatted string like "Wednesday, January 10"
    """
    local_dt = ensure_utc(utc_dt).astimezone(get_timezone(tz_name))

    return local_dt.strftime("%A, %B %d").replace(
        " 0", " "
    )  # "January 9" not "January 09"
