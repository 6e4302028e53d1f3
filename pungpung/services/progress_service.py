"""
ProgressService - Progress & Incentive Business Logic

Orchestrates the engine components for the HTTP layer: logging activity,
setting goals, re-evaluating today's met set, paying awards, and the peer
economy. Every "today" comes from the injected Clock.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from pungpung.db.store import ProgressStore
from pungpung.exceptions import AuthenticationError, RecordNotFoundError, ValidationError
from pungpung.gamification import like_system, mailbox_system
from pungpung.gamification.achievement_system import achieved_totals, evaluate, measured_totals
from pungpung.gamification.goal_ledger import GoalLedger
from pungpung.gamification.level_system import level_of, next_level_threshold, xp_to_next_level
from pungpung.gamification.streak_system import calculate_streak
from pungpung.gamification.xp_system import LevelUpNotifier, XpAwardController
from pungpung.models.activity import ActivityRecord
from pungpung.models.exercise import DEFAULT_EXERCISES, Exercise, Metric
from pungpung.models.goal import ExerciseGoal, GoalLedgerEntry
from pungpung.models.mailbox import MailboxMessage, MessageType
from pungpung.models.student import Gender, Student
from pungpung.services.text_generation import ExerciseTip, ExerciseTipPayload, MotivationTextGenerator
from pungpung.utils.datetime_helpers import Clock, week_key, week_start

logger = logging.getLogger(__name__)

MAX_AVATAR_SEED_LENGTH = 40

# Longest activity history window (a month view plus slack)
MAX_HISTORY_DAYS = 93


class ProgressService:
    """
    Service for student progress.

    Responsibilities:
    - Student lifecycle and PIN login
    - Activity logging with immediate goal evaluation and awards
    - Goal ledger writes (re-evaluating when today's goals change)
    - Progress summaries and class rankings
    - Weekly likes and the secret-friend mailbox
    - Personalized exercise tips
    """

    def __init__(
        self,
        store: ProgressStore,
        clock: Clock,
        generator: MotivationTextGenerator,
        notifier: Optional[LevelUpNotifier] = None
    ):
        self.store = store
        self.clock = clock
        self.generator = generator
        self.notifier = notifier or LevelUpNotifier(generator)
        self.ledger = GoalLedger(store)
        self.awards = XpAwardController(store, self.notifier)
        logger.debug("ProgressService initialized")

    # ==========================================
    # Students
    # ==========================================

    async def get_student(self, student_id: str) -> Student:
        student = await self.store.get_student(student_id)
        if student is None:
            raise RecordNotFoundError(
                f"Student {student_id} not found",
                record_type="Student",
                record_id=student_id
            )
        return student

    async def create_student(
        self,
        name: str,
        class_name: str,
        student_number: int,
        gender: Gender,
        pin: str = "0000",
        avatar_seed: str = "",
        student_id: Optional[str] = None
    ) -> Student:
        try:
            student = Student(
                id=student_id or str(uuid4()),
                name=name,
                class_name=class_name,
                student_number=student_number,
                gender=gender,
                pin=pin,
                avatar_seed=avatar_seed or name,
                created_at=self.clock.now()
            )
        except ValueError as e:
            raise ValidationError(f"Invalid student: {e}", field="student", operation="create_student")
        return await self.store.create_student(student)

    async def delete_student(self, student_id: str) -> None:
        """Delete a student with their records, goals, awards and mailbox"""
        if not await self.store.delete_student(student_id):
            raise RecordNotFoundError(
                f"Student {student_id} not found",
                record_type="Student",
                record_id=student_id,
                operation="delete_student"
            )
        self.awards.forget(student_id)
        self.notifier.forget(student_id)

    async def verify_pin(self, student_id: str, pin: str) -> Student:
        """
        PIN login

        Raises:
            AuthenticationError: unknown student or wrong PIN
        """
        student = await self.store.get_student(student_id)
        if student is None or student.pin != pin:
            raise AuthenticationError(
                f"PIN check failed for student {student_id}",
                student_id=student_id,
                operation="verify_pin"
            )
        return student

    async def change_pin(self, student_id: str, current_pin: str, new_pin: str) -> None:
        await self.verify_pin(student_id, current_pin)
        if len(new_pin) != 4 or not new_pin.isdigit():
            raise ValidationError("PIN must be exactly 4 digits", field="pin", student_id=student_id)
        await self.store.update_pin(student_id, new_pin)
        logger.info(f"Student {student_id} changed PIN")

    async def change_avatar(self, student_id: str, avatar_seed: str) -> Student:
        await self.get_student(student_id)
        avatar_seed = avatar_seed.strip()
        if not avatar_seed or len(avatar_seed) > MAX_AVATAR_SEED_LENGTH:
            raise ValidationError(
                f"Avatar must be 1-{MAX_AVATAR_SEED_LENGTH} characters",
                field="avatar_seed",
                value=avatar_seed,
                student_id=student_id
            )
        await self.store.update_avatar(student_id, avatar_seed)
        logger.info(f"Student {student_id} changed avatar to {avatar_seed}")
        return await self.get_student(student_id)

    async def create_students(self, class_name: str, rows: Sequence[Mapping[str, Any]]) -> List[Student]:
        """
        Add a whole class list at once

        Every row is checked before anything is stored, so a bad row adds
        nobody. Rows need name, student_number and gender; pin is optional.

        Raises:
            ValidationError: listing every bad row (1-based) in `value`
        """
        if not rows:
            raise ValidationError("No students to add", field="students", operation="create_students")

        taken = {s.student_number for s in await self.store.list_students(class_name)}
        students: List[Student] = []
        problems: List[str] = []
        for index, row in enumerate(rows, start=1):
            try:
                student = Student(
                    id=str(uuid4()),
                    name=str(row.get("name", "")).strip(),
                    class_name=class_name,
                    student_number=row.get("student_number"),
                    gender=row.get("gender"),
                    pin=row.get("pin") or "0000",
                    avatar_seed=str(row.get("name", "")).strip(),
                    created_at=self.clock.now()
                )
            except PydanticValidationError as e:
                fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
                problems.append(f"row {index}: invalid {fields or 'student'}")
                continue
            if student.student_number in taken:
                problems.append(f"row {index}: student number {student.student_number} is already used")
                continue
            taken.add(student.student_number)
            students.append(student)

        if problems:
            raise ValidationError(
                f"Invalid student rows: {'; '.join(problems)}",
                field="students",
                value=problems,
                operation="create_students"
            )

        created = [await self.store.create_student(student) for student in students]
        logger.info(f"Added {len(created)} students to {class_name}")
        return created

    # ==========================================
    # Exercise catalog
    # ==========================================

    async def catalog(self) -> List[Exercise]:
        """Built-in exercises followed by the class's custom ones"""
        return list(DEFAULT_EXERCISES) + await self.store.list_custom_exercises()

    async def get_exercise(self, exercise_id: str) -> Exercise:
        for exercise in await self.catalog():
            if exercise.id == exercise_id:
                return exercise
        raise RecordNotFoundError(
            f"Exercise {exercise_id} not found",
            record_type="Exercise",
            record_id=exercise_id
        )

    async def add_custom_exercise(self, exercise: Exercise) -> Exercise:
        if any(e.id == exercise.id for e in DEFAULT_EXERCISES):
            raise ValidationError(
                f"Exercise ID {exercise.id} is reserved",
                field="id",
                value=exercise.id,
                operation="add_custom_exercise"
            )
        if not exercise.applicable_metrics():
            raise ValidationError(
                f"Exercise {exercise.id} declares no unit for its category",
                field="unit",
                operation="add_custom_exercise"
            )
        return await self.store.save_custom_exercise(exercise)

    async def delete_custom_exercise(self, exercise_id: str) -> None:
        if not await self.store.delete_custom_exercise(exercise_id):
            raise RecordNotFoundError(
                f"Custom exercise {exercise_id} not found",
                record_type="Exercise",
                record_id=exercise_id
            )

    # ==========================================
    # Activity and goals
    # ==========================================

    async def _reevaluate(self, student_id: str, day: date) -> Dict[str, Any]:
        """Full recompute of the day's met set, then pay anything newly met"""
        entry = await self.ledger.get_day(student_id, day)
        records = await self.store.list_activities(student_id, since=day, until=day)
        catalog = await self.catalog()

        totals = achieved_totals(entry.goals, entry.skipped, records, catalog, day)
        met = evaluate(entry.goals, entry.skipped, records, catalog, day)
        award = await self.awards.apply(student_id, day, met)

        return {"met": met, "achieved": totals, "award": award}

    async def log_activity(
        self,
        student_id: str,
        exercise_id: str,
        count_value: Optional[int] = None,
        time_value: Optional[int] = None,
        steps_value: Optional[int] = None,
        photo_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Append an activity record for today and re-evaluate today's goals

        Returns:
            {
                'record': ActivityRecord,
                'met': set of exercise IDs met today,
                'achieved': exercise_id -> today's total,
                'award': XpAwardResult
            }

        Raises:
            RecordNotFoundError: unknown student or exercise
            ValidationError: no quantity, or a quantity the exercise doesn't measure
        """
        student = await self.get_student(student_id)
        exercise = await self.get_exercise(exercise_id)

        given = {
            Metric.COUNT: count_value,
            Metric.TIME: time_value,
            Metric.STEPS: steps_value,
        }
        unexpected = sorted(
            m.value for m, v in given.items()
            if v is not None and m not in exercise.applicable_metrics()
        )
        if unexpected:
            raise ValidationError(
                f"{exercise.korean_name} is not measured in {', '.join(unexpected)}",
                field="metric",
                value=unexpected,
                student_id=student_id,
                operation="log_activity"
            )

        try:
            record = ActivityRecord(
                student_id=student_id,
                class_name=student.class_name,
                exercise_id=exercise_id,
                recorded_on=self.clock.today(),
                logged_at=self.clock.now(),
                count_value=count_value,
                time_value=time_value,
                steps_value=steps_value,
                photo_url=photo_url
            )
        except ValueError as e:
            raise ValidationError(
                f"Invalid activity record: {e}",
                field="record",
                student_id=student_id,
                operation="log_activity"
            )

        await self.store.add_activity(record)
        logger.info(f"Logged {exercise_id} for student {student_id} on {record.recorded_on}")

        evaluation = await self._reevaluate(student_id, record.recorded_on)
        return {"record": record, **evaluation}

    async def attach_photo(self, record_id: str, photo_url: str) -> None:
        await self.store.attach_photo(record_id, photo_url)

    async def set_goals(
        self,
        student_id: str,
        day: date,
        goals: Mapping[str, ExerciseGoal],
        skipped: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Write one day's goals; today's goals are re-evaluated immediately

        Activity logged before the goal was set still counts toward it.
        """
        await self.get_student(student_id)
        catalog = {e.id: e for e in await self.catalog()}
        unknown = sorted(set(goals) - set(catalog))
        if unknown:
            raise ValidationError(
                f"Unknown exercises: {', '.join(unknown)}",
                field="goals",
                value=unknown,
                student_id=student_id,
                operation="set_goals"
            )

        # A goal must use a metric its exercise is measured in
        mismatched = sorted(
            exercise_id for exercise_id, goal in goals.items()
            if goal.metric not in catalog[exercise_id].applicable_metrics()
        )
        if mismatched:
            raise ValidationError(
                f"Goal metric not measured by: {', '.join(mismatched)}",
                field="goals",
                value=mismatched,
                student_id=student_id,
                operation="set_goals"
            )

        entry = await self.ledger.set_day(student_id, day, goals, skipped)
        result: Dict[str, Any] = {"entry": entry, "award": None}
        if day == self.clock.today():
            result.update(await self._reevaluate(student_id, day))
        return result

    async def get_goals(self, student_id: str) -> Dict[date, GoalLedgerEntry]:
        await self.get_student(student_id)
        return await self.ledger.get_all(student_id)

    async def week_plan(self, student_id: str, start: Optional[date] = None) -> List[str]:
        """Exercises the student planned this week (Sunday start)"""
        return await self.ledger.week_plan(student_id, start or week_start(self.clock.today()))

    # ==========================================
    # Progress and ranking
    # ==========================================

    async def progress_summary(self, student_id: str) -> Dict[str, Any]:
        """
        Everything the student dashboard shows

        Returns:
            {
                'student': Student,
                'total_xp': int,
                'level': LevelTier,
                'next_level_threshold': int or None,
                'xp_to_next_level': int,
                'streak': int,
                'today': date,
                'goals': GoalLedgerEntry,
                'achieved': exercise_id -> today's total,
                'met': set,
                'awarded': set,
                'weekly_likes': int,
                'level_up_message': LevelUpMessage or None
            }
        """
        student = await self.get_student(student_id)
        today = self.clock.today()

        entry = await self.ledger.get_day(student_id, today)
        records = await self.store.list_activities(student_id)
        todays = [r for r in records if r.recorded_on == today]
        catalog = await self.catalog()

        return {
            "student": student,
            "total_xp": student.total_xp,
            "level": level_of(student.total_xp),
            "next_level_threshold": next_level_threshold(student.total_xp),
            "xp_to_next_level": xp_to_next_level(student.total_xp),
            "streak": calculate_streak(records, today),
            "today": today,
            "goals": entry,
            "achieved": achieved_totals(entry.goals, entry.skipped, todays, catalog, today),
            "met": evaluate(entry.goals, entry.skipped, todays, catalog, today),
            "awarded": set(await self.awards.awarded_for(student_id, today)),
            "weekly_likes": await like_system.weekly_like_count(self.store, student_id, week_key(today)),
            "level_up_message": self.notifier.latest_message(student_id),
        }

    async def class_ranking(self, class_name: str) -> List[Dict[str, Any]]:
        """
        Class leaderboard: total_xp descending, then student number ascending
        """
        students = await self.store.list_students(class_name)
        records = await self.store.list_class_activities(class_name)
        today = self.clock.today()

        by_student: Dict[str, List[ActivityRecord]] = {}
        for record in records:
            by_student.setdefault(record.student_id, []).append(record)

        ordered = sorted(students, key=lambda s: (-s.total_xp, s.student_number))
        return [
            {
                "rank": rank,
                "student": student,
                "total_xp": student.total_xp,
                "level": level_of(student.total_xp),
                "streak": calculate_streak(by_student.get(student.id, []), today),
            }
            for rank, student in enumerate(ordered, start=1)
        ]

    async def class_summary(self, class_name: str, day: Optional[date] = None) -> Dict[str, Any]:
        """
        Teacher's view of one day in a class

        Returns:
            {
                'class_name': str,
                'day': date,
                'total_students': int,
                'active_students': students with at least one record that day,
                'participation_rate': whole percent of active students,
                'activity_count': records logged that day,
                'exercise_log_counts': exercise_id -> records that day,
                'most_logged': exercise_id with the most records, or None,
                'goal_stats': [{'exercise_id', 'students_with_goal', 'students_met_goal'}]
                    for every exercise at least one student has an active goal for
            }
        """
        day = day or self.clock.today()
        students = await self.store.list_students(class_name)
        records = [r for r in await self.store.list_class_activities(class_name, since=day)
                   if r.recorded_on == day]
        catalog = await self.catalog()

        log_counts: Dict[str, int] = {}
        for record in records:
            log_counts[record.exercise_id] = log_counts.get(record.exercise_id, 0) + 1

        # Ties go to the exercise listed first in the catalog
        order = {e.id: index for index, e in enumerate(catalog)}
        most_logged = min(
            log_counts,
            key=lambda exercise_id: (-log_counts[exercise_id], order.get(exercise_id, len(order)), exercise_id),
            default=None
        )

        with_goal: Dict[str, int] = {}
        met_goal: Dict[str, int] = {}
        for student in students:
            entry = await self.ledger.get_day(student.id, day)
            own = [r for r in records if r.student_id == student.id]
            for exercise_id in achieved_totals(entry.goals, entry.skipped, own, catalog, day):
                with_goal[exercise_id] = with_goal.get(exercise_id, 0) + 1
            for exercise_id in evaluate(entry.goals, entry.skipped, own, catalog, day):
                met_goal[exercise_id] = met_goal.get(exercise_id, 0) + 1

        active = {r.student_id for r in records}
        return {
            "class_name": class_name,
            "day": day,
            "total_students": len(students),
            "active_students": len(active),
            "participation_rate": round(len(active) * 100 / len(students)) if students else 0,
            "activity_count": len(records),
            "exercise_log_counts": log_counts,
            "most_logged": most_logged,
            "goal_stats": [
                {
                    "exercise_id": exercise.id,
                    "students_with_goal": with_goal[exercise.id],
                    "students_met_goal": met_goal.get(exercise.id, 0),
                }
                for exercise in catalog
                if exercise.id in with_goal
            ],
        }

    async def activity_history(
        self,
        student_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Day-by-day measured totals for the student's charts

        Defaults to the current week so far. Every day in the window is
        listed, including days without activity.

        Returns:
            {
                'since': date,
                'until': date,
                'days': [{'day': date, 'totals': exercise_id -> metric -> amount}],
                'period_totals': exercise_id -> metric -> amount
            }
        """
        await self.get_student(student_id)
        until = until or self.clock.today()
        since = since or week_start(until)
        if since > until:
            raise ValidationError(
                f"History window starts after it ends ({since} > {until})",
                field="since",
                value=since.isoformat(),
                student_id=student_id
            )
        span = (until - since).days + 1
        if span > MAX_HISTORY_DAYS:
            raise ValidationError(
                f"History window of {span} days exceeds {MAX_HISTORY_DAYS}",
                field="since",
                value=since.isoformat(),
                student_id=student_id
            )

        records = await self.store.list_activities(student_id, since=since, until=until)
        by_day: Dict[date, List[ActivityRecord]] = {}
        for record in records:
            by_day.setdefault(record.recorded_on, []).append(record)

        return {
            "since": since,
            "until": until,
            "days": [
                {"day": day, "totals": measured_totals(by_day.get(day, []))}
                for day in (since + timedelta(days=offset) for offset in range(span))
            ],
            "period_totals": measured_totals(records),
        }

    # ==========================================
    # Peer economy
    # ==========================================

    async def toggle_like(self, liker_id: str, target_id: str) -> like_system.LikeToggleResult:
        """Like/unlike a classmate for the current week"""
        return await like_system.toggle_like(
            self.store, liker_id, target_id, week_key(self.clock.today())
        )

    async def send_message(
        self,
        sender_id: str,
        recipient_id: str,
        message_type: MessageType,
        content: str
    ) -> MailboxMessage:
        return await mailbox_system.send_message(
            self.store, self.clock, sender_id, recipient_id, message_type, content
        )

    async def complete_mission(self, recipient_id: str, message_id: str) -> Dict[str, Any]:
        return await mailbox_system.complete_mission(self.store, recipient_id, message_id)

    async def get_mailbox(self, recipient_id: str) -> List[MailboxMessage]:
        await self.get_student(recipient_id)
        return await mailbox_system.get_mailbox(self.store, recipient_id)

    async def mark_read(self, recipient_id: str, message_id: str) -> None:
        await mailbox_system.mark_read(self.store, recipient_id, message_id)

    async def secret_friend(self, student_id: str) -> Optional[Student]:
        """The classmate this student supports, if the class has assignments"""
        friend_id = await mailbox_system.secret_friend_of(self.store, student_id)
        if friend_id is None:
            return None
        return await self.store.get_student(friend_id)

    # ==========================================
    # Text generation
    # ==========================================

    async def exercise_tip(self, student_id: str) -> ExerciseTip:
        """Personalized tip from today's goals and level (static tip on failure)"""
        student = await self.get_student(student_id)
        entry = await self.ledger.get_day(student_id, self.clock.today())
        names = {e.id: e.korean_name for e in await self.catalog()}

        payload = ExerciseTipPayload(
            grade=student.grade,
            gender=student.gender.value,
            level_name=level_of(student.total_xp).name,
            xp=student.total_xp,
            goals={
                names.get(exercise_id, exercise_id): goal.target
                for exercise_id, goal in entry.goals.items()
                if exercise_id not in entry.skipped and goal.target > 0
            }
        )
        return await self.generator.exercise_tip(payload)
