"""
Booking time parsing and timezone conversions.

Clients submit naive wall-clock strings (``YYYY-MM-DDTHH:mm[:ss]``). They are
interpreted in ``settings.tz_default``, converted to UTC and stored naive.
Everything leaving the API is ISO-8601 UTC with a ``Z`` suffix.
"""
import re
from datetime import datetime
from typing import Optional
import pytz

from ..config import settings

BOOKING_TIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2})?$")


def is_booking_time(value: str) -> bool:
    return bool(BOOKING_TIME_PATTERN.match(value or ""))


def parse_local_datetime(value: str) -> datetime:
    """
    Parse a naive booking time string.

    Raises ValueError when the string does not match the booking pattern or
    names an impossible date (e.g. 2025-02-30T10:00).
    """
    if not is_booking_time(value):
        raise ValueError(f"{value!r} must be ISO-like e.g. 2025-09-22T10:00:00")
    return datetime.fromisoformat(value)


def local_to_utc(local_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert a local datetime to naive UTC.

    A wall-clock time skipped by a spring-forward change raises ValueError.
    One repeated by a fall-back change resolves to its first occurrence
    (the daylight-saving instant).

    Args:
        local_datetime: Local datetime (naive, or aware in any zone)
        timezone_str: Timezone string (defaults to settings.tz_default)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if local_datetime.tzinfo is None:
        try:
            local_dt = tz.localize(local_datetime, is_dst=None)
        except pytz.NonExistentTimeError:
            raise ValueError(f"{local_datetime.isoformat()} does not exist in {tz.zone} (clock change)")
        except pytz.AmbiguousTimeError:
            local_dt = tz.localize(local_datetime, is_dst=True)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC).replace(tzinfo=None)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """Convert a naive UTC datetime to an aware datetime in the business timezone."""
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if utc_datetime.tzinfo is None:
        utc_dt = pytz.UTC.localize(utc_datetime)
    else:
        utc_dt = utc_datetime.astimezone(pytz.UTC)
    return utc_dt.astimezone(tz)


def parse_booking_time(value: str) -> datetime:
    """Client string -> naive UTC datetime ready for storage and comparison."""
    return local_to_utc(parse_local_datetime(value))


def to_iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(pytz.UTC).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


def format_local(value: Optional[datetime]) -> str:
    """Human readable local time for emails."""
    if value is None:
        return ""
    return utc_to_local(value).strftime("%Y-%m-%d %H:%M %Z")
