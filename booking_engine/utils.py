"""Shared utilities used across the booking engine."""

import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIME_FORMAT = "%H:%M"
DATE_FORMAT = "%Y-%m-%d"
_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def is_valid_time(value: str) -> bool:
    """Check that a value is a 24-hour ``HH:MM`` wall-clock time.

    Examples:
        >>> is_valid_time("09:30")
        True
        >>> is_valid_time("9:30")
        False
    """
    return bool(_TIME_PATTERN.match(value or ""))


def time_to_minutes(value: str) -> int:
    """Convert an ``HH:MM`` string to minutes past midnight.

    Examples:
        >>> time_to_minutes("09:30")
        570
    """
    parsed = datetime.strptime(value.strip(), TIME_FORMAT)
    return parsed.hour * 60 + parsed.minute


def normalize_text(value: str) -> str:
    """Trim surrounding whitespace and collapse internal runs of whitespace.

    Examples:
        >>> normalize_text("  Strategy   review  ")
        'Strategy review'
    """
    return re.sub(r"\s+", " ", value.strip())


def utc_now() -> datetime:
    """Current time as an aware UTC datetime; the default engine clock."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_timezone(name: str) -> bool:
    """Check that a name resolves to an IANA time zone.

    Examples:
        >>> is_valid_timezone("Europe/London")
        True
        >>> is_valid_timezone("Mars/Olympus")
        False
    """
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True
