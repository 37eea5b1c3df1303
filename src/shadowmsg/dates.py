"""Conversion between datetimes and Messages timestamps.

Messages stores dates as nanoseconds since 2001-01-01 00:00:00 UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

SOURCE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_DAY = 86_400 * NANOS_PER_SECOND


def from_source_timestamp(nanoseconds: int | None) -> datetime:
    """Convert a Messages timestamp to an aware UTC datetime (millisecond precision)."""
    millis = (nanoseconds or 0) // 1_000_000
    return SOURCE_EPOCH + timedelta(milliseconds=millis)


def to_source_timestamp(value: datetime) -> int:
    """Convert a datetime to a Messages timestamp. Naive values are taken as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    delta = value - SOURCE_EPOCH
    return (delta.days * 86_400 + delta.seconds) * NANOS_PER_SECOND + delta.microseconds * 1_000


def to_iso(nanoseconds: int | None) -> str:
    """ISO-8601 UTC string with millisecond precision and a trailing Z."""
    dt = from_source_timestamp(nanoseconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_date(value: str) -> datetime:
    """Parse YYYY-MM-DD or a full ISO timestamp."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def start_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def end_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


def days_ago(days: int) -> datetime:
    return start_of_day(datetime.now() - timedelta(days=days))


def format_date(nanoseconds: int | None, short: bool = False) -> str:
    """Local-time display string."""
    dt = from_source_timestamp(nanoseconds).astimezone()
    return dt.strftime("%Y-%m-%d %H:%M" if short else "%Y-%m-%d %H:%M:%S")
