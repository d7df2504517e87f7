"""Time zone helpers for UTC storage and local calendar dates."""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def ensure_aware(value: datetime) -> datetime:
    """Tag naive datetimes as UTC, leaving aware values untouched."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_local(value: datetime) -> datetime:
    """Convert a datetime to the configured local timezone."""
    return ensure_aware(value).astimezone(get_local_timezone())


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as UTC."""
    return ensure_aware(value).astimezone(timezone.utc)


def local_date(value: datetime) -> date:
    """Return the calendar date of a timestamp in the local timezone."""
    return to_local(value).date()


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)
