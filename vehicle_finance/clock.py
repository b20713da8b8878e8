"""
Business-day clock helpers.

"Today" is always derived from an injected clock and an explicit timezone so
coverage math never reads the wall clock on its own.
"""

from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(now: datetime, tz_name: str) -> date:
    """Calendar date of ``now`` in ``tz_name``; naive datetimes are taken as UTC"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def fixed_clock(moment: datetime) -> Clock:
    """Clock that always returns ``moment`` (tests, backfills)"""
    return lambda: moment
