"""
Progress & incentive engine for Pungpung

- Level table (XP -> named level)
- Goal ledger and achievement evaluation
- At-most-once daily goal awards and level-up events
- Derived activity streaks
- Peer economy: weekly likes and the secret-friend mailbox
"""

from pungpung.gamification.level_system import LEVEL_TIERS, LevelTier, level_of, next_level_threshold
from pungpung.gamification.goal_ledger import GoalLedger
from pungpung.gamification.achievement_system import evaluate, achieved_totals
from pungpung.gamification.xp_system import XpAwardController, LevelUpNotifier
from pungpung.gamification.streak_system import calculate_streak
from pungpung.gamification.like_system import toggle_like
from pungpung.gamification.mailbox_system import send_message, complete_mission

__all__ = [
    "LEVEL_TIERS",
    "LevelTier",
    "level_of",
    "next_level_threshold",
    "GoalLedger",
    "evaluate",
    "achieved_totals",
    "XpAwardController",
    "LevelUpNotifier",
    "calculate_streak",
    "toggle_like",
    "send_message",
    "complete_mission",
]
