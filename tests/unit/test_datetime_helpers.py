"""Unit tests for Datetime Helpers (pungpung/utils/datetime_helpers.py)"""
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from pungpung.utils.datetime_helpers import (
    Clock,
    UTC,
    now_utc,
    parse_day,
    to_local,
    to_utc,
    week_days,
    week_key,
    week_start,
)


SEOUL = ZoneInfo("Asia/Seoul")


# ============================================================================
# UTC Time Tests
# ============================================================================

def test_now_utc_returns_aware_utc():
    result = now_utc()
    assert result.utcoffset().total_seconds() == 0


def test_to_utc_assumes_naive_is_utc():
    result = to_utc(datetime(2024, 5, 15, 12, 0))
    assert result == datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def test_to_local_crosses_midnight():
    """Test 16:00 UTC is already the next calendar day in Seoul"""
    result = to_local(datetime(2024, 5, 15, 16, 0, tzinfo=UTC), SEOUL)
    assert result.date() == date(2024, 5, 16)


# ============================================================================
# Clock Tests
# ============================================================================

def test_clock_uses_its_timezone():
    clock = Clock("Asia/Seoul")
    assert clock.now().tzinfo == SEOUL


def test_clock_local_date():
    clock = Clock("Asia/Seoul")
    assert clock.local_date(datetime(2024, 5, 15, 15, 30, tzinfo=UTC)) == date(2024, 5, 16)
    assert clock.local_date(datetime(2024, 5, 15, 14, 59, tzinfo=UTC)) == date(2024, 5, 15)


# ============================================================================
# Week Tests
# ============================================================================

def test_week_starts_on_sunday():
    """Test every day of a week maps to the same Sunday"""
    sunday = date(2024, 5, 12)
    for day in week_days(sunday):
        assert week_start(day) == sunday
    assert week_start(date(2024, 5, 19)) == date(2024, 5, 19)


def test_week_key_is_iso_sunday():
    assert week_key(date(2024, 5, 15)) == "2024-05-12"
    assert week_key(date(2024, 5, 18)) == "2024-05-12"
    assert week_key(date(2024, 5, 19)) == "2024-05-19"


def test_week_days():
    days = week_days(date(2024, 5, 12))
    assert len(days) == 7
    assert days[-1] == date(2024, 5, 18)


def test_parse_day():
    assert parse_day("2024-05-15") == date(2024, 5, 15)
    assert parse_day(date(2024, 5, 15)) == date(2024, 5, 15)
