"""
Goal Ledger

Per-student, per-day exercise targets plus the day's "skipped" set.

Each day is stored as its own (student, day) row, so writing day D never
touches any other day and concurrent writes to different days cannot lose
each other. Two writes to the same day are last-writer-wins.
"""

import logging
from datetime import date
from typing import Iterable, Mapping, Optional

from pungpung.db.store import ProgressStore
from pungpung.exceptions import ValidationError
from pungpung.models.goal import ExerciseGoal, GoalLedgerEntry
from pungpung.utils.datetime_helpers import week_days

logger = logging.getLogger(__name__)


class GoalLedger:
    """Reads and writes the goal ledger through a ProgressStore"""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def set_day(
        self,
        student_id: str,
        day: date,
        goals: Mapping[str, ExerciseGoal],
        skipped: Optional[Iterable[str]] = None
    ) -> GoalLedgerEntry:
        """
        Replace one day's goals and skipped set

        Args:
            student_id: Student the ledger belongs to
            day: Calendar day being written (only this day is touched)
            goals: exercise_id -> CountGoal | TimeGoal | StepsGoal
            skipped: Exercise IDs skipped for the day

        Returns:
            The stored entry

        Raises:
            ValidationError: if an exercise has a positive target and is skipped
        """
        try:
            entry = GoalLedgerEntry(day=day, goals=dict(goals), skipped=set(skipped or ()))
        except ValueError as e:
            raise ValidationError(
                f"Invalid goals for {day}: {e}",
                field="goals",
                student_id=student_id,
                operation="set_day"
            )

        await self.store.upsert_goal_day(student_id, entry)
        logger.info(
            f"Set goals for student {student_id} on {day}: "
            f"{len(entry.goals)} goals, {len(entry.skipped)} skipped"
        )
        return entry

    async def get_all(self, student_id: str) -> dict[date, GoalLedgerEntry]:
        """Every stored day for the student, oldest first"""
        return await self.store.get_goal_days(student_id)

    async def get_day(self, student_id: str, day: date) -> GoalLedgerEntry:
        """The entry for one day; an empty entry if nothing was set"""
        entry = await self.store.get_goal_day(student_id, day)
        return entry if entry is not None else GoalLedgerEntry(day=day)

    async def week_plan(self, student_id: str, week_start: date) -> list[str]:
        """
        Exercise IDs the student planned during the week starting at week_start

        Skipped exercises and zero targets do not count as planned.
        """
        days = set(week_days(week_start))
        ledger = await self.get_all(student_id)

        planned: list[str] = []
        for day, entry in ledger.items():
            if day not in days:
                continue
            for exercise_id, goal in entry.goals.items():
                if exercise_id in entry.skipped or goal.target <= 0:
                    continue
                if exercise_id not in planned:
                    planned.append(exercise_id)
        return planned
