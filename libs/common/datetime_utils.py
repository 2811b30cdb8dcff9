"""Clock helpers. Stored timestamps are timezone-aware UTC; courier pickup dates
are calendar days in the store's timezone."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(tz_name: str) -> date:
    """Today's date in the named IANA timezone (e.g. Africa/Lagos)."""
    return datetime.now(ZoneInfo(tz_name)).date()


def minutes_before(minutes: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) - timedelta(minutes=minutes)
