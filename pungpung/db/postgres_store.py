"""PostgreSQL implementation of the progress store (psycopg 3, async pool)"""
import json
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar

import psycopg
from psycopg import errors as pg_errors

from pungpung.config import LIKE_XP
from pungpung.db.connection import Database, db as default_db
from pungpung.db.store import ProgressStore, StoreTransaction
from pungpung.exceptions import RecordNotFoundError, TransactionConflictError, wrap_external_exception
from pungpung.models.activity import ActivityRecord
from pungpung.models.exercise import Exercise
from pungpung.models.goal import GoalLedgerEntry
from pungpung.models.mailbox import MailboxMessage, MissionStatus
from pungpung.models.student import ManitoAssignment, Student
from pungpung.utils.datetime_helpers import parse_day

logger = logging.getLogger(__name__)

T = TypeVar('T')

STUDENT_COLUMNS = "id, name, class_name, student_number, gender, avatar_seed, pin, total_xp, created_at"
ACTIVITY_COLUMNS = (
    "id, student_id, class_name, exercise_id, recorded_on, logged_at, "
    "count_value, time_value, steps_value, photo_url"
)
MESSAGE_COLUMNS = "id, sender_id, recipient_id, type, content, is_read, created_at, mission_status"


def _student_from_row(row: dict) -> Student:
    return Student(**row)


def _activity_from_row(row: dict) -> ActivityRecord:
    return ActivityRecord(**{**row, "id": str(row["id"])})


def _message_from_row(row: dict) -> MailboxMessage:
    return MailboxMessage(**{**row, "id": str(row["id"])})


def _goal_entry_from_row(row: dict) -> GoalLedgerEntry:
    return GoalLedgerEntry(
        day=row["day"],
        goals=row["goals"] or {},
        skipped=set(row["skipped"] or [])
    )


class PostgresTransaction(StoreTransaction):
    """StoreTransaction bound to one open connection inside conn.transaction()"""

    def __init__(self, conn: psycopg.AsyncConnection):
        self.conn = conn

    async def _fetchone(self, query: str, params: tuple) -> Optional[dict]:
        async with self.conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchone()

    async def _execute(self, query: str, params: tuple) -> None:
        async with self.conn.cursor() as cur:
            await cur.execute(query, params)

    async def lock_student(self, student_id: str) -> Optional[Student]:
        row = await self._fetchone(
            f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = %s FOR UPDATE",
            (student_id,)
        )
        return _student_from_row(row) if row else None

    async def increment_xp(self, student_id: str, delta: int) -> int:
        row = await self._fetchone(
            """
            UPDATE students
            SET total_xp = GREATEST(total_xp + %s, 0)
            WHERE id = %s
            RETURNING total_xp
            """,
            (delta, student_id)
        )
        if not row:
            raise RecordNotFoundError(
                f"Student {student_id} not found",
                record_type="Student",
                record_id=student_id,
                operation="increment_xp"
            )
        return row["total_xp"]

    async def record_award(self, student_id: str, day: date, exercise_id: str, amount: int) -> bool:
        row = await self._fetchone(
            """
            INSERT INTO xp_awards (student_id, day, exercise_id, amount)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (student_id, day, exercise_id) DO NOTHING
            RETURNING exercise_id
            """,
            (student_id, day, exercise_id, amount)
        )
        return row is not None

    async def get_weekly_likers(self, target_id: str, week_key: str) -> set[str]:
        row = await self._fetchone(
            """
            SELECT liker_ids FROM weekly_likes
            WHERE target_id = %s AND week_key = %s
            FOR UPDATE
            """,
            (target_id, parse_day(week_key))
        )
        return set(row["liker_ids"]) if row else set()

    async def set_weekly_likers(self, target_id: str, week_key: str, likers: set[str]) -> None:
        await self._execute(
            """
            INSERT INTO weekly_likes (target_id, week_key, liker_ids)
            VALUES (%s, %s, %s)
            ON CONFLICT (target_id, week_key) DO UPDATE SET liker_ids = EXCLUDED.liker_ids
            """,
            (target_id, parse_day(week_key), sorted(likers))
        )

    async def has_sent_mission(self, sender_id: str, day: date) -> bool:
        row = await self._fetchone(
            "SELECT 1 AS sent FROM mission_sends WHERE sender_id = %s AND day = %s",
            (sender_id, day)
        )
        return row is not None

    async def mark_mission_sent(self, sender_id: str, day: date) -> None:
        await self._execute(
            "INSERT INTO mission_sends (sender_id, day) VALUES (%s, %s)",
            (sender_id, day)
        )

    async def add_message(self, message: MailboxMessage) -> None:
        await self._execute(
            f"""
            INSERT INTO mailbox_messages ({MESSAGE_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                message.id,
                message.sender_id,
                message.recipient_id,
                message.type.value,
                message.content,
                message.is_read,
                message.created_at,
                message.mission_status.value if message.mission_status else None,
            )
        )

    async def get_message_for_update(self, recipient_id: str, message_id: str) -> Optional[MailboxMessage]:
        row = await self._fetchone(
            f"""
            SELECT {MESSAGE_COLUMNS} FROM mailbox_messages
            WHERE id = %s AND recipient_id = %s
            FOR UPDATE
            """,
            (message_id, recipient_id)
        )
        return _message_from_row(row) if row else None

    async def set_mission_status(self, recipient_id: str, message_id: str, status: MissionStatus) -> None:
        await self._execute(
            """
            UPDATE mailbox_messages SET mission_status = %s
            WHERE id = %s AND recipient_id = %s
            """,
            (status.value, message_id, recipient_id)
        )


class PostgresProgressStore(ProgressStore):
    """Progress store backed by PostgreSQL (see migrations/001_progress_engine.sql)"""

    def __init__(self, database: Database = default_db, **kwargs):
        super().__init__(**kwargs)
        self.db = database

    async def _execute_transaction(self, handler: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        try:
            async with self.db.connection() as conn:
                async with conn.transaction():
                    return await handler(PostgresTransaction(conn))
        except (pg_errors.SerializationFailure, pg_errors.DeadlockDetected) as e:
            raise TransactionConflictError(message=f"Write conflict: {e}", cause=e)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="transaction")

    async def open(self) -> None:
        await self.db.init_pool()

    async def close(self) -> None:
        await self.db.close_pool()

    async def health_check(self) -> str:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    await cur.fetchone()
        except (psycopg.Error, RuntimeError) as e:
            logger.error(f"Database health check failed: {e}")
            return "disconnected"
        return "connected"

    async def _fetchone(self, query: str, params: tuple, operation: str) -> Optional[dict]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    row = await cur.fetchone()
                    await conn.commit()
                    return row
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation)

    async def _fetchall(self, query: str, params: tuple, operation: str) -> list[dict]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation)

    async def _execute(self, query: str, params: tuple, operation: str) -> int:
        """Run a write statement and commit; returns affected row count"""
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rowcount = cur.rowcount
                    await conn.commit()
                    return rowcount
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation)

    # ==========================================
    # Students
    # ==========================================

    async def create_student(self, student: Student) -> Student:
        row = await self._fetchone(
            f"""
            INSERT INTO students (id, name, class_name, student_number, gender, avatar_seed, pin, total_xp)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {STUDENT_COLUMNS}
            """,
            (
                student.id,
                student.name,
                student.class_name,
                student.student_number,
                student.gender.value,
                student.avatar_seed,
                student.pin,
                student.total_xp,
            ),
            operation="create_student"
        )
        logger.info(f"Created student {student.id} in {student.class_name}")
        return _student_from_row(row)

    async def get_student(self, student_id: str) -> Optional[Student]:
        row = await self._fetchone(
            f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = %s",
            (student_id,),
            operation="get_student"
        )
        return _student_from_row(row) if row else None

    async def list_students(self, class_name: Optional[str] = None) -> list[Student]:
        if class_name is None:
            rows = await self._fetchall(
                f"SELECT {STUDENT_COLUMNS} FROM students ORDER BY class_name, student_number",
                (),
                operation="list_students"
            )
        else:
            rows = await self._fetchall(
                f"SELECT {STUDENT_COLUMNS} FROM students WHERE class_name = %s ORDER BY student_number",
                (class_name,),
                operation="list_students"
            )
        return [_student_from_row(row) for row in rows]

    async def delete_student(self, student_id: str) -> bool:
        """
        Delete a student; dependent rows go with ON DELETE CASCADE.

        Likes the student gave live in classmates' liker_ids arrays, so they
        are removed here and the LIKE_XP each one paid is taken back.
        """
        try:
            async with self.db.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        # Students rows before weekly_likes rows, the same lock order as toggle_like
                        await cur.execute(
                            """
                            UPDATE students s
                            SET total_xp = GREATEST(s.total_xp - %s * given.likes, 0)
                            FROM (
                                SELECT target_id, COUNT(*) AS likes FROM weekly_likes
                                WHERE %s = ANY(liker_ids) AND target_id <> %s
                                GROUP BY target_id
                            ) given
                            WHERE s.id = given.target_id
                            """,
                            (LIKE_XP, student_id, student_id)
                        )
                        await cur.execute(
                            """
                            UPDATE weekly_likes SET liker_ids = array_remove(liker_ids, %s)
                            WHERE %s = ANY(liker_ids)
                            """,
                            (student_id, student_id)
                        )
                        await cur.execute("DELETE FROM students WHERE id = %s", (student_id,))
                        deleted = cur.rowcount
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="delete_student")

        if deleted:
            logger.info(f"Deleted student {student_id} and dependent records")
        return deleted > 0

    async def update_pin(self, student_id: str, pin: str) -> None:
        await self._execute(
            "UPDATE students SET pin = %s WHERE id = %s",
            (pin, student_id),
            operation="update_pin"
        )

    async def update_avatar(self, student_id: str, avatar_seed: str) -> None:
        await self._execute(
            "UPDATE students SET avatar_seed = %s WHERE id = %s",
            (avatar_seed, student_id),
            operation="update_avatar"
        )

    # ==========================================
    # Exercise catalog
    # ==========================================

    async def list_custom_exercises(self) -> list[Exercise]:
        rows = await self._fetchall(
            """
            SELECT id, korean_name, category, count_unit, time_unit, steps_unit, icon_name
            FROM custom_exercises ORDER BY id
            """,
            (),
            operation="list_custom_exercises"
        )
        return [Exercise(**row, is_custom=True) for row in rows]

    async def save_custom_exercise(self, exercise: Exercise) -> Exercise:
        await self._execute(
            """
            INSERT INTO custom_exercises (id, korean_name, category, count_unit, time_unit, steps_unit, icon_name)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                korean_name = EXCLUDED.korean_name,
                category = EXCLUDED.category,
                count_unit = EXCLUDED.count_unit,
                time_unit = EXCLUDED.time_unit,
                steps_unit = EXCLUDED.steps_unit,
                icon_name = EXCLUDED.icon_name
            """,
            (
                exercise.id,
                exercise.korean_name,
                exercise.category.value,
                exercise.count_unit,
                exercise.time_unit,
                exercise.steps_unit,
                exercise.icon_name,
            ),
            operation="save_custom_exercise"
        )
        return exercise.model_copy(update={"is_custom": True})

    async def delete_custom_exercise(self, exercise_id: str) -> bool:
        deleted = await self._execute(
            "DELETE FROM custom_exercises WHERE id = %s",
            (exercise_id,),
            operation="delete_custom_exercise"
        )
        return deleted > 0

    # ==========================================
    # Activity records
    # ==========================================

    async def add_activity(self, record: ActivityRecord) -> ActivityRecord:
        await self._execute(
            f"""
            INSERT INTO activity_records ({ACTIVITY_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                record.id,
                record.student_id,
                record.class_name,
                record.exercise_id,
                record.recorded_on,
                record.logged_at,
                record.count_value,
                record.time_value,
                record.steps_value,
                record.photo_url,
            ),
            operation="add_activity"
        )
        return record

    async def attach_photo(self, record_id: str, photo_url: str) -> None:
        updated = await self._execute(
            "UPDATE activity_records SET photo_url = %s WHERE id = %s",
            (photo_url, record_id),
            operation="attach_photo"
        )
        if not updated:
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
        rows = await self._fetchall(
            f"""
            SELECT {ACTIVITY_COLUMNS} FROM activity_records
            WHERE student_id = %s
              AND (%s::date IS NULL OR recorded_on >= %s::date)
              AND (%s::date IS NULL OR recorded_on <= %s::date)
            ORDER BY recorded_on, logged_at
            """,
            (student_id, since, since, until, until),
            operation="list_activities"
        )
        return [_activity_from_row(row) for row in rows]

    async def list_class_activities(self, class_name: str, since: Optional[date] = None) -> list[ActivityRecord]:
        rows = await self._fetchall(
            f"""
            SELECT {ACTIVITY_COLUMNS} FROM activity_records
            WHERE class_name = %s
              AND (%s::date IS NULL OR recorded_on >= %s::date)
            ORDER BY recorded_on, logged_at
            """,
            (class_name, since, since),
            operation="list_class_activities"
        )
        return [_activity_from_row(row) for row in rows]

    # ==========================================
    # Goal ledger
    # ==========================================

    async def upsert_goal_day(self, student_id: str, entry: GoalLedgerEntry) -> None:
        await self._execute(
            """
            INSERT INTO goal_days (student_id, day, goals, skipped)
            VALUES (%s, %s, %s::jsonb, %s)
            ON CONFLICT (student_id, day) DO UPDATE SET
                goals = EXCLUDED.goals,
                skipped = EXCLUDED.skipped,
                updated_at = CURRENT_TIMESTAMP
            """,
            (student_id, entry.day, json.dumps(entry.goals_payload()), sorted(entry.skipped)),
            operation="upsert_goal_day"
        )

    async def get_goal_days(self, student_id: str) -> dict[date, GoalLedgerEntry]:
        rows = await self._fetchall(
            "SELECT day, goals, skipped FROM goal_days WHERE student_id = %s ORDER BY day",
            (student_id,),
            operation="get_goal_days"
        )
        return {row["day"]: _goal_entry_from_row(row) for row in rows}

    async def get_goal_day(self, student_id: str, day: date) -> Optional[GoalLedgerEntry]:
        row = await self._fetchone(
            "SELECT day, goals, skipped FROM goal_days WHERE student_id = %s AND day = %s",
            (student_id, day),
            operation="get_goal_day"
        )
        return _goal_entry_from_row(row) if row else None

    # ==========================================
    # Awards
    # ==========================================

    async def get_awarded(self, student_id: str, day: date) -> set[str]:
        rows = await self._fetchall(
            "SELECT exercise_id FROM xp_awards WHERE student_id = %s AND day = %s",
            (student_id, day),
            operation="get_awarded"
        )
        return {row["exercise_id"] for row in rows}

    # ==========================================
    # Likes
    # ==========================================

    async def get_weekly_likes(self, target_id: str) -> dict[str, set[str]]:
        rows = await self._fetchall(
            "SELECT week_key, liker_ids FROM weekly_likes WHERE target_id = %s",
            (target_id,),
            operation="get_weekly_likes"
        )
        return {row["week_key"].isoformat(): set(row["liker_ids"]) for row in rows}

    # ==========================================
    # Mailbox
    # ==========================================

    async def list_messages(self, recipient_id: str) -> list[MailboxMessage]:
        rows = await self._fetchall(
            f"""
            SELECT {MESSAGE_COLUMNS} FROM mailbox_messages
            WHERE recipient_id = %s
            ORDER BY created_at DESC
            """,
            (recipient_id,),
            operation="list_messages"
        )
        return [_message_from_row(row) for row in rows]

    async def mark_read(self, recipient_id: str, message_id: str) -> bool:
        updated = await self._execute(
            "UPDATE mailbox_messages SET is_read = TRUE WHERE id = %s AND recipient_id = %s",
            (message_id, recipient_id),
            operation="mark_read"
        )
        return updated > 0

    # ==========================================
    # Secret friends
    # ==========================================

    async def save_manito_assignment(self, assignment: ManitoAssignment) -> None:
        await self._execute(
            """
            INSERT INTO manito_assignments (class_name, pairs)
            VALUES (%s, %s::jsonb)
            ON CONFLICT (class_name) DO UPDATE SET pairs = EXCLUDED.pairs
            """,
            (assignment.class_name, json.dumps(assignment.pairs)),
            operation="save_manito_assignment"
        )

    async def get_manito_assignment(self, class_name: str) -> Optional[ManitoAssignment]:
        row: Optional[dict[str, Any]] = await self._fetchone(
            "SELECT class_name, pairs FROM manito_assignments WHERE class_name = %s",
            (class_name,),
            operation="get_manito_assignment"
        )
        return ManitoAssignment(**row) if row else None
