"""
Time helpers for billing.

Timestamps are stored and compared in UTC. Document dates (issue, due,
validity) are plain calendar dates taken from the UTC clock.
"""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Aware current time in UTC. Never call datetime.now() directly."""
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Calendar date used for issue dates, due dates and expiry sweeps."""
    return now_utc().date()


def to_utc(dt: datetime) -> datetime:
    """
    Normalize an aware datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse a stored ISO 8601 timestamp (sessions, webhook payloads) to UTC.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)


def start_of_month(dt: datetime) -> datetime:
    """First instant of dt's calendar month, same timezone as dt."""
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def same_calendar_month(a: date | datetime, b: date | datetime) -> bool:
    """True if both values fall in the same year and month.

    Quota counters reset when the stored period start and now differ here.
    """
    return a.year == b.year and a.month == b.month
