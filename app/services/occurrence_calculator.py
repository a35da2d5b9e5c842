"""
Next-birthday occurrence math.

An occurrence is the UTC instant of NOTIFICATION_HOUR (9 AM) local time on the
person's birth month/day, in the timezone resolved from their location.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config.settings import settings
from app.services.timezone_resolver import DEFAULT_TIMEZONE, resolve_timezone
from app.utils.datetime_utils import get_current_year, to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()

BIRTHDAY_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


class InvalidBirthdayError(ValueError):
    pass


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def parse_birthday(birthday: str) -> Tuple[int, int]:
    """Return (month, day) from a YYYY-MM-DD string, validating the calendar date."""
    match = BIRTHDAY_PATTERN.match(birthday or "")
    if not match:
        raise InvalidBirthdayError(f"INVALID_BIRTHDAY: expected YYYY-MM-DD, got {birthday!r}")

    year, month, day = (int(part) for part in match.groups())
    try:
        date(year, month, day)
    except ValueError as exc:
        raise InvalidBirthdayError(f"INVALID_BIRTHDAY: {birthday} is not a calendar date") from exc
    return month, day


def birthday_date_for_year(
    month: int, day: int, year: int, leap_day_rule: Optional[str] = None
) -> date:
    """Birthday in a given year; 29 Feb on a non-leap year follows the leap day rule."""
    if month == 2 and day == 29 and not is_leap_year(year):
        rule = leap_day_rule or settings.LEAP_DAY_RULE
        if rule == "feb28":
            return date(year, 2, 28)
        if rule == "mar1":
            return date(year, 3, 1)
        raise InvalidBirthdayError(f"INVALID_BIRTHDAY: unsupported leap day rule {rule}")
    return date(year, month, day)


def load_zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown IANA timezone, falling back to UTC", timezone=timezone_name
        )
        return ZoneInfo(DEFAULT_TIMEZONE)


def _local_occurrence(
    month: int, day: int, year: int, zone: ZoneInfo, leap_day_rule: Optional[str]
) -> datetime:
    occurrence_date = birthday_date_for_year(month, day, year, leap_day_rule)
    return datetime(
        occurrence_date.year,
        occurrence_date.month,
        occurrence_date.day,
        settings.NOTIFICATION_HOUR,
        0,
        0,
        tzinfo=zone,
    )


def next_occurrence(
    birthday: str,
    timezone_name: str,
    reference_instant: Optional[datetime] = None,
    leap_day_rule: Optional[str] = None,
) -> datetime:
    """
    Next UTC instant of 9 AM local on the birthday, strictly after reference_instant.

    The candidate is built in the reference's local year; if it is at or before
    the reference (compared in the person's timezone) the following year is used.
    """
    month, day = parse_birthday(birthday)
    zone = load_zone(timezone_name)
    reference_local = to_utc(reference_instant or utc_now()).astimezone(zone)

    candidate = _local_occurrence(month, day, reference_local.year, zone, leap_day_rule)
    if candidate <= reference_local:
        candidate = _local_occurrence(
            month, day, reference_local.year + 1, zone, leap_day_rule
        )

    return candidate.astimezone(timezone.utc)


def calculate_next_birthday_utc(
    birthday: str,
    city: Optional[str],
    state: Optional[str],
    country: Optional[str],
    reference_instant: Optional[datetime] = None,
) -> datetime:
    """Resolve the location's timezone and compute the next occurrence."""
    timezone_name = resolve_timezone(city, state, country)
    return next_occurrence(birthday, timezone_name, reference_instant)


def should_send_notification(
    next_birthday_utc: datetime,
    last_notification_year: int,
    reference_instant: Optional[datetime] = None,
    buffer_seconds: int = 0,
) -> bool:
    """A person is due once their occurrence has passed and this year is not yet notified."""
    reference = to_utc(reference_instant or utc_now())
    threshold = reference + timedelta(seconds=buffer_seconds)
    return (
        to_utc(next_birthday_utc) <= threshold
        and last_notification_year < get_current_year(reference)
    )
