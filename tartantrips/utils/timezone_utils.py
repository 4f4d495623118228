"""Centralized Timezone Utilities - All datetime operations should use these functions."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from tartantrips.config import settings

UTC = timezone.utc


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def local_tz(offset_minutes: Optional[int] = None) -> timezone:
    """Fixed-offset timezone that flight dates and times are entered in."""
    if offset_minutes is None:
        offset_minutes = settings.local_utc_offset_minutes
    return timezone(timedelta(minutes=offset_minutes))


def parse_date(date_str: str) -> date:
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def parse_time(time_str: str) -> time:
    """Parse HH:MM or HH:MM:SS into a time."""
    time_str = time_str.strip()
    fmt = "%H:%M:%S" if time_str.count(":") == 2 else "%H:%M"
    return datetime.strptime(time_str, fmt).time()


def normalize_time(time_str: Optional[str]) -> str:
    """Trim stored times to HH:MM."""
    if not time_str:
        return ""
    return time_str[:5] if len(time_str) >= 5 else time_str


def parse_local_to_utc(
    date_str: str, time_str: str, tz_offset_minutes: Optional[int] = None
) -> datetime:
    """Parse local date/time strings and convert to UTC datetime."""
    naive_dt = datetime.combine(parse_date(date_str), parse_time(time_str))
    local_dt = naive_dt.replace(tzinfo=local_tz(tz_offset_minutes))
    return local_dt.astimezone(UTC)


def to_local(dt: datetime, tz_offset_minutes: Optional[int] = None) -> datetime:
    """Convert an aware (or naive UTC) datetime to the local clock."""
    return ensure_utc(dt).astimezone(local_tz(tz_offset_minutes))


def ensure_utc(dt: datetime) -> datetime:
    """MongoDB hands back naive datetimes; treat them as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def minutes_of_day(time_str: str) -> int:
    parsed = parse_time(normalize_time(time_str))
    return parsed.hour * 60 + parsed.minute
