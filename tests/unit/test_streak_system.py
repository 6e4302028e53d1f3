"""Unit tests for streak calculation (pungpung/gamification/streak_system.py)"""
from datetime import date, timedelta

from pungpung.gamification.streak_system import calculate_streak, streak_from_days


TODAY = date(2024, 5, 15)


def days_ago(*offsets):
    return [TODAY - timedelta(days=n) for n in offsets]


# ============================================================================
# Streak From Days Tests
# ============================================================================

def test_no_activity_is_zero():
    """Test an empty history has no streak"""
    assert streak_from_days([], TODAY) == 0


def test_three_consecutive_days_ending_today():
    """Test today, yesterday and the day before count 3"""
    assert streak_from_days(days_ago(0, 1, 2), TODAY) == 3


def test_gap_stops_the_count():
    """Test today and two days ago count only today"""
    assert streak_from_days(days_ago(0, 2), TODAY) == 1


def test_latest_day_before_yesterday_breaks_streak():
    """Test a streak whose last day is two days ago is broken"""
    assert streak_from_days(days_ago(2), TODAY) == 0
    assert streak_from_days(days_ago(2, 3, 4, 5), TODAY) == 0


def test_streak_ending_yesterday_is_kept():
    """Test not having exercised yet today keeps yesterday's streak"""
    assert streak_from_days(days_ago(1, 2, 3), TODAY) == 3


def test_duplicate_days_count_once():
    """Test several records on the same day count as one day"""
    assert streak_from_days(days_ago(0, 0, 0, 1), TODAY) == 2


# ============================================================================
# Records Tests
# ============================================================================

def test_calculate_streak_uses_recorded_on(record_factory):
    """Test records are grouped by their recorded calendar day"""
    records = [
        record_factory("squat", day=TODAY, count=10),
        record_factory("plank", day=TODAY, time=30),
        record_factory("squat", day=TODAY - timedelta(days=1), count=5),
    ]
    assert calculate_streak(records, TODAY) == 2


def test_calculate_streak_without_records():
    assert calculate_streak([], TODAY) == 0
