"""
Streak Calculation

Current consecutive-day activity streak, derived on demand from activity
records. No counter is stored, so the streak can never drift from the logs.

Rules:
- Only distinct calendar days matter, not how many records a day has
- If the latest active day is before yesterday, the streak is broken (0)
- Otherwise count back from the latest active day until the first gap
"""

from datetime import date, timedelta
from typing import Iterable

from pungpung.models.activity import ActivityRecord


def calculate_streak(records: Iterable[ActivityRecord], today: date) -> int:
    """
    Consecutive active days ending today or yesterday

    Example:
        days {today, today-1, today-2} -> 3
        days {today, today-2}          -> 1
        days {today-2}                 -> 0
    """
    return streak_from_days({r.recorded_on for r in records}, today)


def streak_from_days(active_days: Iterable[date], today: date) -> int:
    """Same as calculate_streak, from a collection of active calendar days"""
    days = set(active_days)
    if not days:
        return 0

    latest = max(days)
    if (today - latest).days > 1:
        return 0

    streak = 0
    current = latest
    while current in days:
        streak += 1
        current -= timedelta(days=1)
    return streak
