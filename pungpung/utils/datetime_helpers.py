"""
Standardized Date/Time Handling Utilities

This module provides centralized functions for date/time operations to ensure:
1. All DB timestamps stored in UTC
2. All calendar-day comparisons ("today", streak days, week keys) use the
   school's local timezone
3. The current time always comes from an injectable Clock so tests can pin it

CRITICAL RULES:
- Never call date.today() or datetime.now() in engine code; ask the Clock
- Never mix naive and aware datetimes
- A record's calendar day is fixed when it is logged (recorded_on) and never
  recomputed from logged_at
"""

import logging
from datetime import datetime, date, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from pungpung.config import LOCAL_TIMEZONE

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")


class Clock:
    """Source of the current time in the school's local timezone"""

    def __init__(self, timezone: Union[str, ZoneInfo] = LOCAL_TIMEZONE):
        self.tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    def now(self) -> datetime:
        """Current datetime in the local timezone (timezone-aware)"""
        return datetime.now(self.tz)

    def today(self) -> date:
        """Today's local calendar date"""
        return self.now().date()

    def local_date(self, value: datetime) -> date:
        """Calendar date of a timestamp in the local timezone"""
        return to_local(value, self.tz).date()


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC for storage

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        logger.warning(f"Naive datetime {dt} converted to UTC - assuming already UTC")
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_local(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert datetime to the local timezone (naive values are treated as UTC)"""
    tz = tz or ZoneInfo(LOCAL_TIMEZONE)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz)


def week_start(day: date) -> date:
    """Sunday that starts the calendar week containing `day`"""
    # weekday(): Monday=0 ... Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_key(day: date) -> str:
    """
    Key used for weekly like sets

    Example:
        week_key(date(2024, 5, 15))  # Wednesday -> '2024-05-12'
    """
    return week_start(day).isoformat()


def week_days(start: date) -> list[date]:
    """The 7 calendar days starting at `start`"""
    return [start + timedelta(days=i) for i in range(7)]


def parse_day(value: Union[str, date]) -> date:
    """Accept 'YYYY-MM-DD' or a date"""
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
