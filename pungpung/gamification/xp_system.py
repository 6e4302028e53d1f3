"""
XP Award System

Pays the per-goal XP award and fires level-up events.

Award Rules:
- Each exercise goal met today pays GOAL_AWARD_XP (10) once per day
- Per (student, day) the state is NotMet -> Met(unawarded) -> Met(awarded)
- The award row and the XP increment commit in one transaction, so an award
  is never paid twice, even across processes
- If the write fails the exercise stays unawarded and the next evaluation
  pass pays it
- A new calendar day starts with nothing awarded

Level-ups:
- The level is recomputed from the new total after every pass
- One event per pass in which the level rank went up
- Congratulation text is generated in the background; the award never waits
  on it and never rolls back because of it
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from pungpung.config import GOAL_AWARD_XP
from pungpung.db.store import ProgressStore, StoreTransaction
from pungpung.exceptions import PungpungError, RecordNotFoundError
from pungpung.gamification.level_system import LevelTier, level_of, next_level_threshold
from pungpung.models.student import Student
from pungpung.resilience.metrics import record_level_up, record_xp_change
from pungpung.services.text_generation import (
    CongratulationPayload,
    MotivationTextGenerator,
    fallback_congratulation,
)

logger = logging.getLogger(__name__)


@dataclass
class XpAwardResult:
    """Outcome of one award pass"""
    student_id: str
    day: date
    awarded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    xp_awarded: int = 0
    new_total_xp: Optional[int] = None
    old_level: Optional[LevelTier] = None
    new_level: Optional[LevelTier] = None

    @property
    def leveled_up(self) -> bool:
        return (
            self.old_level is not None
            and self.new_level is not None
            and self.new_level.level > self.old_level.level
        )


@dataclass
class LevelUpMessage:
    """Congratulation text produced for a level-up event"""
    student_id: str
    level: LevelTier
    total_xp: int
    text: str
    sequence: int


class LevelUpNotifier:
    """
    Turns level-up events into congratulation text

    Each event starts a background task. When a student levels up again
    before an earlier request returns, the earlier result is discarded: only
    the most recently issued request's text is kept.
    """

    def __init__(self, generator: MotivationTextGenerator):
        self.generator = generator
        self._sequence: dict[str, int] = {}
        self._latest: dict[str, LevelUpMessage] = {}
        self._tasks: set[asyncio.Task] = set()

    def notify(self, student: Student, total_xp: int) -> asyncio.Task:
        """Start generating text for a level-up; returns the background task"""
        sequence = self._sequence.get(student.id, 0) + 1
        self._sequence[student.id] = sequence

        level = level_of(total_xp)
        payload = CongratulationPayload(
            student_name=student.name,
            level_name=level.name,
            total_xp=total_xp,
            next_level_threshold=next_level_threshold(total_xp)
        )

        task = asyncio.create_task(self._generate(student.id, sequence, level, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _generate(
        self,
        student_id: str,
        sequence: int,
        level: LevelTier,
        payload: CongratulationPayload
    ) -> Optional[LevelUpMessage]:
        try:
            text = await self.generator.congratulate(payload)
        except Exception as e:
            logger.warning(
                f"Level-up text for student {student_id} failed, using fallback: "
                f"{type(e).__name__}: {e}"
            )
            text = fallback_congratulation(payload)

        if self._sequence.get(student_id) != sequence:
            logger.info(
                f"Discarding superseded level-up text for student {student_id} "
                f"(request {sequence}, latest {self._sequence.get(student_id)})"
            )
            return None

        message = LevelUpMessage(
            student_id=student_id,
            level=level,
            total_xp=payload.total_xp,
            text=text,
            sequence=sequence
        )
        self._latest[student_id] = message
        return message

    def latest_message(self, student_id: str) -> Optional[LevelUpMessage]:
        return self._latest.get(student_id)

    def forget(self, student_id: str) -> None:
        self._latest.pop(student_id, None)
        self._sequence.pop(student_id, None)

    async def drain(self) -> None:
        """Wait for all pending text requests (shutdown and tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


class XpAwardController:
    """Pays goal awards at most once per (student, exercise, day)"""

    def __init__(
        self,
        store: ProgressStore,
        notifier: Optional[LevelUpNotifier] = None,
        award_xp: int = GOAL_AWARD_XP
    ):
        self.store = store
        self.notifier = notifier
        self.award_xp = award_xp
        self._awarded: dict[tuple[str, date], set[str]] = {}

    async def awarded_for(self, student_id: str, day: date) -> set[str]:
        """
        Exercise IDs already paid for (student, day)

        Loaded from storage the first time a day is seen, then kept in memory.
        Older days for the student are dropped from the cache.
        """
        key = (student_id, day)
        if key not in self._awarded:
            for cached in [k for k in self._awarded if k[0] == student_id]:
                del self._awarded[cached]
            self._awarded[key] = await self.store.get_awarded(student_id, day)
        return self._awarded[key]

    def forget(self, student_id: str) -> None:
        for cached in [k for k in self._awarded if k[0] == student_id]:
            del self._awarded[cached]

    async def _pay(self, student_id: str, day: date, exercise_id: str):
        async def handler(tx: StoreTransaction):
            student = await tx.lock_student(student_id)
            if student is None:
                raise RecordNotFoundError(
                    f"Student {student_id} not found",
                    record_type="Student",
                    record_id=student_id,
                    operation="award_goal_xp"
                )
            before = student.total_xp
            if not await tx.record_award(student_id, day, exercise_id, self.award_xp):
                return student, before, before, False
            after = await tx.increment_xp(student_id, self.award_xp)
            return student, before, after, True

        return await self.store.run_transaction(handler, operation="award_goal_xp")

    async def apply(self, student_id: str, day: date, met: Iterable[str]) -> XpAwardResult:
        """
        Pay every newly met exercise for the day

        Args:
            student_id: Student whose goals were evaluated
            day: The local calendar day evaluated
            met: Full met set from the achievement evaluator

        Returns:
            XpAwardResult with awarded/failed exercise IDs, the new total and
            the level before and after
        """
        result = XpAwardResult(student_id=student_id, day=day)
        awarded = await self.awarded_for(student_id, day)
        pending = sorted(set(met) - awarded)
        if not pending:
            return result

        student: Optional[Student] = None
        for exercise_id in pending:
            try:
                student, before, after, paid = await self._pay(student_id, day, exercise_id)
            except PungpungError as e:
                logger.warning(
                    f"Award for {exercise_id} to student {student_id} on {day} not persisted, "
                    f"will retry on next evaluation: {e.message}"
                )
                result.failed.append(exercise_id)
                continue

            awarded.add(exercise_id)
            if result.old_level is None:
                result.old_level = level_of(before)
            result.new_total_xp = after
            if paid:
                result.awarded.append(exercise_id)
                result.xp_awarded += self.award_xp
                record_xp_change("goal", self.award_xp)

        if result.new_total_xp is not None:
            result.new_level = level_of(result.new_total_xp)

        if result.awarded:
            logger.info(
                f"Awarded {result.xp_awarded} XP to student {student_id} for "
                f"{', '.join(result.awarded)} on {day}. Total: {result.new_total_xp} XP, "
                f"Level: {result.new_level.name}"
            )

        if result.leveled_up:
            logger.info(
                f"Student {student_id} leveled up from {result.old_level.name} "
                f"to {result.new_level.name}!"
            )
            record_level_up()
            if self.notifier is not None:
                self.notifier.notify(student, result.new_total_xp)

        return result
