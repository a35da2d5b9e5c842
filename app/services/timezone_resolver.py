"""
Location to IANA timezone resolution.

Locations are unvalidated free text, so resolution is total: every input maps
to a timezone, unknown ones degrade to UTC with a warning. Precedence:

1. USA: state table, then city substrings, then America/New_York.
2. City table (exact, case-insensitive).
3. Country table (exact, case-insensitive).
4. UTC.
"""

from typing import Optional

from app.utils.logging import get_logger

logger = get_logger()

DEFAULT_TIMEZONE = "UTC"
DEFAULT_USA_TIMEZONE = "America/New_York"

USA_COUNTRY_NAMES = frozenset(
    {
        "usa",
        "us",
        "u.s.",
        "u.s.a.",
        "united states",
        "united states of america",
    }
)

USA_STATE_TIMEZONES = {
    "new york": "America/New_York",
    "california": "America/Los_Angeles",
    "texas": "America/Chicago",
    "florida": "America/New_York",
    "illinois": "America/Chicago",
    "washington": "America/Los_Angeles",
    "colorado": "America/Denver",
    "arizona": "America/Phoenix",
    "hawaii": "Pacific/Honolulu",
    "alaska": "America/Anchorage",
}

# Checked in order, first substring hit wins
USA_CITY_TIMEZONES = (
    ("new york", "America/New_York"),
    ("los angeles", "America/Los_Angeles"),
    ("chicago", "America/Chicago"),
    ("houston", "America/Chicago"),
    ("phoenix", "America/Phoenix"),
    ("denver", "America/Denver"),
    ("seattle", "America/Los_Angeles"),
)

CITY_TIMEZONES = {
    "london": "Europe/London",
    "paris": "Europe/Paris",
    "berlin": "Europe/Berlin",
    "tokyo": "Asia/Tokyo",
    "sydney": "Australia/Sydney",
    "singapore": "Asia/Singapore",
    "dubai": "Asia/Dubai",
    "mumbai": "Asia/Kolkata",
    "hong kong": "Asia/Hong_Kong",
    "toronto": "America/Toronto",
    "vancouver": "America/Vancouver",
    "mexico city": "America/Mexico_City",
    "sao paulo": "America/Sao_Paulo",
    "buenos aires": "America/Argentina/Buenos_Aires",
    "bangkok": "Asia/Bangkok",
    "jakarta": "Asia/Jakarta",
    "manila": "Asia/Manila",
}

COUNTRY_TIMEZONES = {
    "uk": "Europe/London",
    "united kingdom": "Europe/London",
    "france": "Europe/Paris",
    "germany": "Europe/Berlin",
    "japan": "Asia/Tokyo",
    "australia": "Australia/Sydney",
    "singapore": "Asia/Singapore",
    "india": "Asia/Kolkata",
    "china": "Asia/Shanghai",
    "canada": "America/Toronto",
    "mexico": "America/Mexico_City",
    "brazil": "America/Sao_Paulo",
    "philippines": "Asia/Manila",
    "thailand": "Asia/Bangkok",
    "indonesia": "Asia/Jakarta",
}


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _resolve_usa(city: str, state: str) -> str:
    if state and state in USA_STATE_TIMEZONES:
        return USA_STATE_TIMEZONES[state]

    for city_fragment, timezone_name in USA_CITY_TIMEZONES:
        if city_fragment in city:
            return timezone_name

    return DEFAULT_USA_TIMEZONE


def resolve_timezone(
    city: Optional[str], state: Optional[str], country: Optional[str]
) -> str:
    """
    Map a free-form location to an IANA timezone identifier.

    Never raises; unknown locations resolve to UTC and log a warning.
    """
    city_key = _normalize(city)
    state_key = _normalize(state)
    country_key = _normalize(country)

    if country_key in USA_COUNTRY_NAMES:
        return _resolve_usa(city_key, state_key)

    if city_key in CITY_TIMEZONES:
        return CITY_TIMEZONES[city_key]

    if country_key in COUNTRY_TIMEZONES:
        return COUNTRY_TIMEZONES[country_key]

    logger.warning(
        "Unknown timezone for location, falling back to UTC",
        city=city,
        state=state,
        country=country,
    )
    return DEFAULT_TIMEZONE
