"""
In-memory progress store

Backs the test suite and STORAGE_BACKEND=memory local runs. Nothing is
persisted. Transactions are serialized by a single asyncio.Lock and rolled
back by restoring a snapshot, which gives the same observable guarantees as
row locks in PostgreSQL for a single process.
"""

import asyncio
import copy
import logging
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

from pungpung.config import LIKE_XP
from pungpung.db.store import ProgressStore, StoreTransaction
from pungpung.exceptions import RecordNotFoundError, ValidationError
from pungpung.models.activity import ActivityRecord
from pungpung.models.exercise import Exercise
from pungpung.models.goal import GoalLedgerEntry
from pungpung.models.mailbox import MailboxMessage, MissionStatus
from pungpung.models.student import ManitoAssignment, Student
from pungpung.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

T = TypeVar('T')


class _State:
    """All stored data; copied wholesale for transaction rollback"""

    def __init__(self):
        self.students: dict[str, Student] = {}
        self.custom_exercises: dict[str, Exercise] = {}
        self.activities: list[ActivityRecord] = []
        self.goal_days: dict[tuple[str, date], GoalLedgerEntry] = {}
        self.awards: dict[tuple[str, date], dict[str, int]] = {}
        self.likes: dict[tuple[str, str], set[str]] = {}
        self.messages: dict[str, list[MailboxMessage]] = {}
        self.mission_sends: set[tuple[str, date]] = set()
        self.manito: dict[str, ManitoAssignment] = {}


class InMemoryTransaction(StoreTransaction):
    """Transaction over the shared state; the store holds its lock meanwhile"""

    def __init__(self, state: _State):
        self.state = state

    async def lock_student(self, student_id: str) -> Optional[Student]:
        return self.state.students.get(student_id)

    async def increment_xp(self, student_id: str, delta: int) -> int:
        student = self.state.students.get(student_id)
        if student is None:
            raise RecordNotFoundError(
                f"Student {student_id} not found",
                record_type="Student",
                record_id=student_id,
                operation="increment_xp"
            )
        new_total = max(student.total_xp + delta, 0)
        self.state.students[student_id] = student.model_copy(update={"total_xp": new_total})
        return new_total

    async def record_award(self, student_id: str, day: date, exercise_id: str, amount: int) -> bool:
        awarded = self.state.awards.setdefault((student_id, day), {})
        if exercise_id in awarded:
            return False
        awarded[exercise_id] = amount
        return True

    async def get_weekly_likers(self, target_id: str, week_key: str) -> set[str]:
        return set(self.state.likes.get((target_id, week_key), set()))

    async def set_weekly_likers(self, target_id: str, week_key: str, likers: set[str]) -> None:
        self.state.likes[(target_id, week_key)] = set(likers)

    async def has_sent_mission(self, sender_id: str, day: date) -> bool:
        return (sender_id, day) in self.state.mission_sends

    async def mark_mission_sent(self, sender_id: str, day: date) -> None:
        self.state.mission_sends.add((sender_id, day))

    async def add_message(self, message: MailboxMessage) -> None:
        self.state.messages.setdefault(message.recipient_id, []).append(message)

    async def get_message_for_update(self, recipient_id: str, message_id: str) -> Optional[MailboxMessage]:
        for message in self.state.messages.get(recipient_id, []):
            if message.id == message_id:
                return message
        return None

    async def set_mission_status(self, recipient_id: str, message_id: str, status: MissionStatus) -> None:
        mailbox = self.state.messages.get(recipient_id, [])
        for index, message in enumerate(mailbox):
            if message.id == message_id:
                mailbox[index] = message.model_copy(update={"mission_status": status})
                return


class InMemoryProgressStore(ProgressStore):
    """Progress store kept in process memory"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._state = _State()
        self._lock = asyncio.Lock()
        logger.warning(
            "InMemoryProgressStore initialized - progress is NOT persisted! "
            "Use STORAGE_BACKEND=postgres outside tests and local development."
        )

    async def _execute_transaction(self, handler: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        async with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                return await handler(InMemoryTransaction(self._state))
            except BaseException:
                self._state = snapshot
                raise

    # Students

    async def create_student(self, student: Student) -> Student:
        async with self._lock:
            if student.id in self._state.students:
                raise ValidationError(
                    f"Student {student.id} already exists",
                    field="id",
                    value=student.id
                )
            created = student.model_copy(update={"created_at": student.created_at or now_utc()})
            self._state.students[student.id] = created
            logger.info(f"Created student {student.id} in {student.class_name}")
            return created

    async def get_student(self, student_id: str) -> Optional[Student]:
        return self._state.students.get(student_id)

    async def list_students(self, class_name: Optional[str] = None) -> list[Student]:
        students = [
            s for s in self._state.students.values()
            if class_name is None or s.class_name == class_name
        ]
        return sorted(students, key=lambda s: (s.class_name, s.student_number))

    async def delete_student(self, student_id: str) -> bool:
        async with self._lock:
            state = self._state
            if state.students.pop(student_id, None) is None:
                return False
            state.activities = [r for r in state.activities if r.student_id != student_id]
            state.goal_days = {k: v for k, v in state.goal_days.items() if k[0] != student_id}
            state.awards = {k: v for k, v in state.awards.items() if k[0] != student_id}
            state.likes = {k: v for k, v in state.likes.items() if k[0] != student_id}

            # Likes the student gave are withdrawn along with their XP
            for (target_id, _week), likers in state.likes.items():
                if student_id in likers:
                    likers.discard(student_id)
                    target = state.students[target_id]
                    state.students[target_id] = target.model_copy(
                        update={"total_xp": max(target.total_xp - LIKE_XP, 0)}
                    )

            state.messages.pop(student_id, None)
            state.mission_sends = {k for k in state.mission_sends if k[0] != student_id}
            logger.info(f"Deleted student {student_id} and dependent records")
            return True

    async def _update_student(self, student_id: str, **fields) -> None:
        async with self._lock:
            student = self._state.students.get(student_id)
            if student is None:
                raise RecordNotFoundError(
                    f"Student {student_id} not found",
                    record_type="Student",
                    record_id=student_id
                )
            self._state.students[student_id] = student.model_copy(update=fields)

    async def update_pin(self, student_id: str, pin: str) -> None:
        await self._update_student(student_id, pin=pin)

    async def update_avatar(self, student_id: str, avatar_seed: str) -> None:
        await self._update_student(student_id, avatar_seed=avatar_seed)

    # Exercise catalog

    async def list_custom_exercises(self) -> list[Exercise]:
        return sorted(self._state.custom_exercises.values(), key=lambda e: e.id)

    async def save_custom_exercise(self, exercise: Exercise) -> Exercise:
        async with self._lock:
            saved = exercise.model_copy(update={"is_custom": True})
            self._state.custom_exercises[exercise.id] = saved
            return saved

    async def delete_custom_exercise(self, exercise_id: str) -> bool:
        async with self._lock:
            return self._state.custom_exercises.pop(exercise_id, None) is not None

    # Activity records

    async def add_activity(self, record: ActivityRecord) -> ActivityRecord:
        async with self._lock:
            self._state.activities.append(record)
            return record

    async def attach_photo(self, record_id: str, photo_url: str) -> None:
        async with self._lock:
            for index, record in enumerate(self._state.activities):
                if record.id == record_id:
                    self._state.activities[index] = record.model_copy(update={"photo_url": photo_url})
                    return
        raise RecordNotFoundError(
            f"Activity record {record_id} not found",
            record_type="ActivityRecord",
            record_id=record_id,
            operation="attach_photo"
        )

    async def list_activities(
        self,
        student_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None
    ) -> list[ActivityRecord]:
        records = [
            r for r in self._state.activities
            if r.student_id == student_id
            and (since is None or r.recorded_on >= since)
            and (until is None or r.recorded_on <= until)
        ]
        return sorted(records, key=lambda r: (r.recorded_on, r.logged_at))

    async def list_class_activities(self, class_name: str, since: Optional[date] = None) -> list[ActivityRecord]:
        records = [
            r for r in self._state.activities
            if r.class_name == class_name and (since is None or r.recorded_on >= since)
        ]
        return sorted(records, key=lambda r: (r.recorded_on, r.logged_at))

    # Goal ledger

    async def upsert_goal_day(self, student_id: str, entry: GoalLedgerEntry) -> None:
        async with self._lock:
            self._state.goal_days[(student_id, entry.day)] = entry.model_copy(deep=True)

    async def get_goal_days(self, student_id: str) -> dict[date, GoalLedgerEntry]:
        days = {
            day: entry.model_copy(deep=True)
            for (sid, day), entry in self._state.goal_days.items()
            if sid == student_id
        }
        return dict(sorted(days.items()))

    async def get_goal_day(self, student_id: str, day: date) -> Optional[GoalLedgerEntry]:
        entry = self._state.goal_days.get((student_id, day))
        return entry.model_copy(deep=True) if entry else None

    # Awards

    async def get_awarded(self, student_id: str, day: date) -> set[str]:
        return set(self._state.awards.get((student_id, day), {}))

    # Likes

    async def get_weekly_likes(self, target_id: str) -> dict[str, set[str]]:
        return {
            week: set(likers)
            for (tid, week), likers in self._state.likes.items()
            if tid == target_id
        }

    # Mailbox

    async def list_messages(self, recipient_id: str) -> list[MailboxMessage]:
        return sorted(
            self._state.messages.get(recipient_id, []),
            key=lambda m: m.created_at,
            reverse=True
        )

    async def mark_read(self, recipient_id: str, message_id: str) -> bool:
        async with self._lock:
            mailbox = self._state.messages.get(recipient_id, [])
            for index, message in enumerate(mailbox):
                if message.id == message_id:
                    mailbox[index] = message.model_copy(update={"is_read": True})
                    return True
            return False

    # Secret friends

    async def save_manito_assignment(self, assignment: ManitoAssignment) -> None:
        async with self._lock:
            self._state.manito[assignment.class_name] = assignment

    async def get_manito_assignment(self, class_name: str) -> Optional[ManitoAssignment]:
        return self._state.manito.get(class_name)
