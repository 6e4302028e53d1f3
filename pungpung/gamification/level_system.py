"""
Level Table

Maps cumulative XP to a named level.

Tiers:
- 10 fixed tiers, 200 XP each
- The last tier (전설의 운동왕, 1800+) is open-ended
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LevelTier:
    """XP band [min_xp, max_xp); max_xp is None for the last tier"""
    level: int
    name: str
    min_xp: int
    max_xp: Optional[int]

    def contains(self, xp: int) -> bool:
        return xp >= self.min_xp and (self.max_xp is None or xp < self.max_xp)


LEVEL_TIERS: tuple[LevelTier, ...] = (
    LevelTier(1, "움직새싹", 0, 200),
    LevelTier(2, "운동 새내기", 200, 400),
    LevelTier(3, "체력 꿈나무", 400, 600),
    LevelTier(4, "체력 유망주", 600, 800),
    LevelTier(5, "튼튼 탐험가", 800, 1000),
    LevelTier(6, "씩씩 도전자", 1000, 1200),
    LevelTier(7, "체력 챔피언", 1200, 1400),
    LevelTier(8, "운동 달인", 1400, 1600),
    LevelTier(9, "체력 영웅", 1600, 1800),
    LevelTier(10, "전설의 운동왕", 1800, None),
)


def level_of(xp: int) -> LevelTier:
    """
    Level for a cumulative XP total

    Scans from the highest tier down. Negative XP is not a valid total but
    maps to the lowest tier instead of raising.

    Example:
        level_of(590).name  # '체력 꿈나무'
        level_of(600).name  # '체력 유망주'
    """
    for tier in reversed(LEVEL_TIERS):
        if tier.min_xp <= xp:
            return tier
    return LEVEL_TIERS[0]


def next_level_threshold(xp: int) -> Optional[int]:
    """XP at which the next level starts, or None at the top level"""
    return level_of(xp).max_xp


def xp_to_next_level(xp: int) -> int:
    """XP still needed for the next level (0 at the top level)"""
    threshold = next_level_threshold(xp)
    if threshold is None:
        return 0
    return threshold - max(xp, 0)
