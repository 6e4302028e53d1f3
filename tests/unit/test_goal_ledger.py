"""Unit tests for the goal ledger (pungpung/gamification/goal_ledger.py)"""
import asyncio
import pytest
from datetime import date, timedelta

from pungpung.exceptions import ValidationError
from pungpung.gamification.goal_ledger import GoalLedger
from pungpung.models.goal import CountGoal, StepsGoal, TimeGoal, exercise_goal_adapter


SUNDAY = date(2024, 5, 12)


@pytest.fixture
def ledger(store):
    return GoalLedger(store)


# ============================================================================
# Set / Get Tests
# ============================================================================

@pytest.mark.asyncio
async def test_set_and_get_day(ledger):
    """Test a written day reads back unchanged"""
    day = SUNDAY + timedelta(days=1)
    await ledger.set_day("s-alice", day, {"squat": CountGoal(target=20)}, skipped={"plank"})

    entry = await ledger.get_day("s-alice", day)
    assert entry.day == day
    assert entry.goals["squat"].target == 20
    assert entry.skipped == {"plank"}


@pytest.mark.asyncio
async def test_get_missing_day_is_empty(ledger):
    """Test a day with nothing set reads as an empty entry"""
    entry = await ledger.get_day("s-alice", SUNDAY)
    assert entry.goals == {}
    assert entry.skipped == set()


@pytest.mark.asyncio
async def test_set_day_replaces_only_that_day(ledger):
    """Test writing day D leaves other days untouched"""
    monday = SUNDAY + timedelta(days=1)
    tuesday = SUNDAY + timedelta(days=2)
    await ledger.set_day("s-alice", monday, {"squat": CountGoal(target=20)})
    await ledger.set_day("s-alice", tuesday, {"plank": TimeGoal(target=60)})
    await ledger.set_day("s-alice", monday, {"jump_rope": CountGoal(target=50)})

    ledger_days = await ledger.get_all("s-alice")
    assert list(ledger_days) == [monday, tuesday]
    assert set(ledger_days[monday].goals) == {"jump_rope"}
    assert set(ledger_days[tuesday].goals) == {"plank"}


@pytest.mark.asyncio
async def test_concurrent_writes_to_different_days(ledger):
    """Test concurrent writes to different days never lose each other"""
    days = [SUNDAY + timedelta(days=i) for i in range(7)]
    await asyncio.gather(*[
        ledger.set_day("s-alice", day, {"squat": CountGoal(target=10 + i)})
        for i, day in enumerate(days)
    ])

    ledger_days = await ledger.get_all("s-alice")
    assert [entry.goals["squat"].target for entry in ledger_days.values()] == [10 + i for i in range(7)]


@pytest.mark.asyncio
async def test_targeted_and_skipped_is_rejected(ledger):
    """Test an exercise cannot have a positive target and be skipped"""
    with pytest.raises(ValidationError) as exc_info:
        await ledger.set_day("s-alice", SUNDAY, {"squat": CountGoal(target=20)}, skipped={"squat"})

    assert exc_info.value.field == "goals"
    assert await ledger.get_all("s-alice") == {}


@pytest.mark.asyncio
async def test_zero_target_may_be_skipped(ledger):
    entry = await ledger.set_day("s-alice", SUNDAY, {"squat": CountGoal(target=0)}, skipped={"squat"})
    assert entry.skipped == {"squat"}


def test_goal_kind_is_parsed_from_payload():
    """Test the goal variant is selected by its kind tag"""
    assert isinstance(exercise_goal_adapter.validate_python({"kind": "steps", "target": 3000}), StepsGoal)
    assert isinstance(exercise_goal_adapter.validate_python({"kind": "time", "target": 60}), TimeGoal)


def test_negative_target_is_rejected():
    with pytest.raises(ValueError):
        CountGoal(target=-1)


# ============================================================================
# Week Plan Tests
# ============================================================================

@pytest.mark.asyncio
async def test_week_plan_collects_planned_exercises(ledger):
    """Test distinct non-skipped, positive-target exercises in the week"""
    await ledger.set_day("s-alice", SUNDAY, {"squat": CountGoal(target=20)})
    await ledger.set_day(
        "s-alice",
        SUNDAY + timedelta(days=3),
        {"squat": CountGoal(target=30), "plank": TimeGoal(target=0), "walk_run": StepsGoal(target=3000)},
        skipped={"plank"}
    )
    # Next week's Sunday is outside the plan
    await ledger.set_day("s-alice", SUNDAY + timedelta(days=7), {"jump_rope": CountGoal(target=10)})

    plan = await ledger.week_plan("s-alice", SUNDAY)
    assert plan == ["squat", "walk_run"]


@pytest.mark.asyncio
async def test_week_plan_empty_week(ledger):
    assert await ledger.week_plan("s-alice", SUNDAY) == []
