"""
Shared pytest fixtures for the Pungpung test suite

Fixtures provide:
- A pinned clock in the school's timezone
- A fresh in-memory store per test
- A mocked text generator (no network)
- Sample students and activity records
"""
import pytest
from datetime import date, datetime, timedelta
from typing import Optional
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

from pungpung.db.memory_store import InMemoryProgressStore
from pungpung.models.activity import ActivityRecord
from pungpung.models.student import Gender, Student
from pungpung.resilience.circuit_breaker import TEXT_GENERATION_BREAKER
from pungpung.services.progress_service import ProgressService
from pungpung.services.text_generation import ExerciseTip, MotivationTextGenerator
from pungpung.utils.datetime_helpers import Clock


SEOUL = ZoneInfo("Asia/Seoul")

# Wednesday; its week starts Sunday 2024-05-12
TODAY = date(2024, 5, 15)


class FixedClock(Clock):
    """Clock pinned to a given local time"""

    def __init__(self, current: datetime):
        super().__init__(current.tzinfo)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.current = self.current + timedelta(days=days, hours=hours)


# ============================================================================
# Infrastructure Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_text_generation_breaker():
    """Every test starts with the text-generation circuit closed"""
    TEXT_GENERATION_BREAKER.close()
    yield
    TEXT_GENERATION_BREAKER.close()


@pytest.fixture
def clock():
    """Clock pinned to 2024-05-15 09:00 Asia/Seoul"""
    return FixedClock(datetime(2024, 5, 15, 9, 0, tzinfo=SEOUL))


@pytest.fixture
def store():
    """Empty in-memory progress store"""
    return InMemoryProgressStore()


@pytest.fixture
def mock_generator():
    """Text generator that answers instantly without calling OpenAI"""
    generator = MagicMock(spec=MotivationTextGenerator)
    generator.congratulate = AsyncMock(return_value="축하해요! 🎉")
    generator.exercise_tip = AsyncMock(return_value=ExerciseTip(
        title="줄넘기 100번 도전",
        detail="가볍게 뛰면서 리듬을 느껴보세요.",
        reasoning="심폐 지구력에 좋아요."
    ))
    return generator


@pytest.fixture
def service(store, clock, mock_generator):
    """ProgressService wired to the in-memory store and mocked generator"""
    return ProgressService(store, clock, mock_generator)


# ============================================================================
# Student Fixtures
# ============================================================================

@pytest.fixture
def student_factory(store):
    """Factory fixture that stores students"""
    async def _create(
        student_id: str,
        name: Optional[str] = None,
        class_name: str = "3학년 1반",
        student_number: int = 1,
        gender: Gender = Gender.FEMALE,
        total_xp: int = 0,
        pin: str = "1234"
    ) -> Student:
        return await store.create_student(Student(
            id=student_id,
            name=name or student_id,
            class_name=class_name,
            student_number=student_number,
            gender=gender,
            pin=pin,
            total_xp=total_xp
        ))
    return _create


@pytest.fixture
async def alice(student_factory):
    return await student_factory("s-alice", name="김하늘", student_number=1)


@pytest.fixture
async def bob(student_factory):
    return await student_factory("s-bob", name="이바다", student_number=2, gender=Gender.MALE)


@pytest.fixture
async def carol(student_factory):
    return await student_factory("s-carol", name="박구름", student_number=3)


# ============================================================================
# Activity Fixtures
# ============================================================================

@pytest.fixture
def record_factory():
    """Factory fixture for activity records (not stored)"""
    def _create(
        exercise_id: str,
        day: date = TODAY,
        student_id: str = "s-alice",
        count: Optional[int] = None,
        time: Optional[int] = None,
        steps: Optional[int] = None
    ) -> ActivityRecord:
        return ActivityRecord(
            student_id=student_id,
            class_name="3학년 1반",
            exercise_id=exercise_id,
            recorded_on=day,
            logged_at=datetime(day.year, day.month, day.day, 12, 0, tzinfo=SEOUL),
            count_value=count,
            time_value=time,
            steps_value=steps
        )
    return _create
