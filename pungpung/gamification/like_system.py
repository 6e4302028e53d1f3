"""
Weekly Likes

Classmates can like a student once per week. Each like moves LIKE_XP (5)
onto the target's balance; liking again takes it back.

The like set and the XP change commit in one transaction holding the
target's row lock, so concurrent likers never lose an update or apply a
delta twice.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from pungpung.config import LIKE_XP
from pungpung.db.store import ProgressStore, StoreTransaction
from pungpung.exceptions import RecordNotFoundError, ValidationError
from pungpung.resilience.metrics import record_like_toggle, record_xp_change
from pungpung.utils.datetime_helpers import parse_day, week_start

logger = logging.getLogger(__name__)


class LikeAction(str, Enum):
    """What a toggle did"""
    LIKE = "like"
    UNLIKE = "unlike"
    IGNORED = "ignored"


@dataclass
class LikeToggleResult:
    """UI feedback for a toggle; the store stays the source of truth"""
    action: LikeAction
    target_id: str
    week_key: str
    like_count: int
    target_total_xp: int


async def toggle_like(
    store: ProgressStore,
    liker_id: str,
    target_id: str,
    week_key: str,
    like_xp: int = LIKE_XP
) -> LikeToggleResult:
    """
    Like or unlike a classmate for the week

    Liking yourself is ignored (nothing changes).

    Args:
        store: Progress store
        liker_id: Student pressing the button
        target_id: Student receiving the like
        week_key: Sunday-start week key, e.g. '2024-05-12'

    Returns:
        LikeToggleResult with the action taken and the new like count

    Raises:
        RecordNotFoundError: if the target does not exist
        ValidationError: if week_key is not a Sunday date
    """
    try:
        week = parse_day(week_key)
    except ValueError:
        raise ValidationError(
            f"Invalid week key {week_key!r}",
            field="week_key",
            value=week_key,
            operation="toggle_like"
        )
    if week != week_start(week):
        raise ValidationError(
            f"Week key {week_key} is not a Sunday",
            field="week_key",
            value=week_key,
            operation="toggle_like"
        )
    week_key = week.isoformat()

    async def handler(tx: StoreTransaction) -> LikeToggleResult:
        target = await tx.lock_student(target_id)
        if target is None:
            raise RecordNotFoundError(
                f"Student {target_id} not found",
                record_type="Student",
                record_id=target_id,
                operation="toggle_like"
            )

        likers = await tx.get_weekly_likers(target_id, week_key)

        if liker_id == target_id:
            return LikeToggleResult(
                action=LikeAction.IGNORED,
                target_id=target_id,
                week_key=week_key,
                like_count=len(likers),
                target_total_xp=target.total_xp
            )

        if liker_id in likers:
            likers.discard(liker_id)
            action, delta = LikeAction.UNLIKE, -like_xp
        else:
            likers.add(liker_id)
            action, delta = LikeAction.LIKE, like_xp

        await tx.set_weekly_likers(target_id, week_key, likers)
        new_total = await tx.increment_xp(target_id, delta)

        return LikeToggleResult(
            action=action,
            target_id=target_id,
            week_key=week_key,
            like_count=len(likers),
            target_total_xp=new_total
        )

    result = await store.run_transaction(handler, operation="toggle_like")

    if result.action == LikeAction.IGNORED:
        logger.info(f"Ignored self-like from student {liker_id}")
        return result

    record_like_toggle(result.action.value)
    record_xp_change("like", like_xp if result.action == LikeAction.LIKE else -like_xp)
    logger.info(
        f"Student {liker_id} {result.action.value}d student {target_id} for week {week_key}. "
        f"Likes: {result.like_count}, target total: {result.target_total_xp} XP"
    )
    return result


async def weekly_like_count(store: ProgressStore, target_id: str, week_key: str) -> int:
    likes = await store.get_weekly_likes(target_id)
    return len(likes.get(week_key, set()))
