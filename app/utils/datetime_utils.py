from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        # Convert to UTC
        return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).
    This is the storage representation of every DateTime column.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        # Convert to UTC and remove timezone info
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def get_current_year(reference_instant: Optional[datetime] = None) -> int:
    """
    Calendar year of the reference clock, evaluated in UTC.

    Every "already notified this year" comparison goes through here so the
    scanner and the consumer agree on what "this year" means.
    """
    if reference_instant is None:
        reference_instant = utc_now()
    return to_utc(reference_instant).year


def format_iso_utc(dt: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with a trailing Z."""
    return to_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
