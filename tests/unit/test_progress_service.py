"""Unit tests for ProgressService (pungpung/services/progress_service.py)"""
import pytest
from datetime import date, timedelta

from pungpung.exceptions import AuthenticationError, RecordNotFoundError, ValidationError
from pungpung.models.exercise import Exercise, ExerciseCategory
from pungpung.models.goal import CountGoal, StepsGoal, TimeGoal
from pungpung.models.mailbox import MessageType
from pungpung.models.student import Gender, ManitoAssignment


TODAY = date(2024, 5, 15)


# ============================================================================
# Student Tests
# ============================================================================

@pytest.mark.asyncio
async def test_create_student_defaults(service):
    student = await service.create_student("정해님", "4학년 2반", 7, Gender.MALE)

    assert student.pin == "0000"
    assert student.total_xp == 0
    assert student.avatar_seed == "정해님"
    assert student.grade == "4학년"
    assert await service.get_student(student.id) == student


@pytest.mark.asyncio
async def test_create_student_invalid_pin(service):
    with pytest.raises(ValidationError):
        await service.create_student("정해님", "4학년 2반", 7, Gender.MALE, pin="12a4")


@pytest.mark.asyncio
async def test_verify_pin(service, alice):
    assert (await service.verify_pin(alice.id, "1234")).id == alice.id

    with pytest.raises(AuthenticationError):
        await service.verify_pin(alice.id, "9999")
    with pytest.raises(AuthenticationError):
        await service.verify_pin("s-nobody", "1234")


@pytest.mark.asyncio
async def test_change_pin(service, alice):
    await service.change_pin(alice.id, "1234", "4321")

    assert (await service.verify_pin(alice.id, "4321")).id == alice.id
    with pytest.raises(ValidationError):
        await service.change_pin(alice.id, "4321", "12")


@pytest.mark.asyncio
async def test_delete_student(service, alice):
    await service.delete_student(alice.id)

    with pytest.raises(RecordNotFoundError):
        await service.get_student(alice.id)
    with pytest.raises(RecordNotFoundError):
        await service.delete_student(alice.id)


@pytest.mark.asyncio
async def test_change_avatar(service, store, alice):
    student = await service.change_avatar(alice.id, " rocket ")

    assert student.avatar_seed == "rocket"
    assert (await store.get_student(alice.id)).avatar_seed == "rocket"

    with pytest.raises(ValidationError):
        await service.change_avatar(alice.id, "   ")
    with pytest.raises(RecordNotFoundError):
        await service.change_avatar("s-nobody", "cat")


@pytest.mark.asyncio
async def test_create_students_adds_the_whole_list(service, store):
    created = await service.create_students("5학년 3반", [
        {"name": "홍길동", "student_number": 1, "gender": "male"},
        {"name": "김영희", "student_number": 2, "gender": "female", "pin": "2468"},
    ])

    assert [s.name for s in created] == ["홍길동", "김영희"]
    assert created[0].pin == "0000"
    assert created[1].pin == "2468"
    assert [s.student_number for s in await store.list_students("5학년 3반")] == [1, 2]


@pytest.mark.asyncio
async def test_create_students_bad_row_adds_nobody(service, store, alice):
    """Test one invalid row rejects the batch and names every bad row"""
    with pytest.raises(ValidationError) as exc_info:
        await service.create_students("3학년 1반", [
            {"name": "홍길동", "student_number": 2, "gender": "male"},
            {"name": "김영희", "student_number": 1, "gender": "female"},
            {"name": "", "student_number": 3, "gender": "robot"},
        ])

    problems = exc_info.value.value
    assert len(problems) == 2
    assert problems[0].startswith("row 2:")
    assert problems[1].startswith("row 3:")
    assert [s.id for s in await store.list_students("3학년 1반")] == [alice.id]


@pytest.mark.asyncio
async def test_create_students_rejects_repeated_number(service):
    with pytest.raises(ValidationError):
        await service.create_students("5학년 3반", [
            {"name": "홍길동", "student_number": 4, "gender": "male"},
            {"name": "김영희", "student_number": 4, "gender": "female"},
        ])


@pytest.mark.asyncio
async def test_deleted_liker_no_longer_counts(service, alice, bob, carol):
    await service.toggle_like(bob.id, alice.id)
    await service.toggle_like(carol.id, alice.id)

    await service.delete_student(bob.id)

    summary = await service.progress_summary(alice.id)
    assert summary["weekly_likes"] == 1
    assert summary["total_xp"] == 5

    result = await service.toggle_like(carol.id, alice.id)
    assert result.like_count == 0
    assert result.target_total_xp == 0


# ============================================================================
# Activity and Award Tests
# ============================================================================

@pytest.mark.asyncio
async def test_log_activity_meets_goal_and_levels_up(service, student_factory, mock_generator):
    """Test 590 XP + 20 squats against a 20 squat goal reaches 600 and 체력 유망주"""
    student = await student_factory("s-dana", name="최별", total_xp=590)
    await service.set_goals(student.id, TODAY, {"squat": CountGoal(target=20)})

    result = await service.log_activity(student.id, "squat", count_value=20)
    await service.notifier.drain()

    assert result["met"] == {"squat"}
    assert result["award"].awarded == ["squat"]
    assert result["award"].new_total_xp == 600
    assert result["award"].leveled_up
    mock_generator.congratulate.assert_awaited_once()

    summary = await service.progress_summary(student.id)
    assert summary["total_xp"] == 600
    assert summary["level"].name == "체력 유망주"
    assert summary["xp_to_next_level"] == 200
    assert summary["awarded"] == {"squat"}
    assert summary["level_up_message"].text == "축하해요! 🎉"


@pytest.mark.asyncio
async def test_more_activity_does_not_pay_twice(service, store, alice):
    await service.set_goals(alice.id, TODAY, {"squat": CountGoal(target=20)})
    await service.log_activity(alice.id, "squat", count_value=20)
    result = await service.log_activity(alice.id, "squat", count_value=20)

    assert result["met"] == {"squat"}
    assert result["award"].awarded == []
    assert result["achieved"] == {"squat": 40}
    assert (await store.get_student(alice.id)).total_xp == 10


@pytest.mark.asyncio
async def test_goal_set_after_activity_counts_it(service, store, alice):
    """Test a goal set after the day's activity is evaluated against it"""
    await service.log_activity(alice.id, "plank", time_value=60)

    result = await service.set_goals(alice.id, TODAY, {"plank": TimeGoal(target=60)})

    assert result["met"] == {"plank"}
    assert result["award"].awarded == ["plank"]
    assert (await store.get_student(alice.id)).total_xp == 10


@pytest.mark.asyncio
async def test_goals_for_other_days_are_not_evaluated(service, alice):
    result = await service.set_goals(alice.id, TODAY + timedelta(days=1), {"squat": CountGoal(target=5)})

    assert result["award"] is None
    assert "met" not in result


@pytest.mark.asyncio
async def test_new_day_needs_new_activity(service, store, clock, alice):
    """Test yesterday's activity does not meet today's goal"""
    await service.set_goals(alice.id, TODAY, {"squat": CountGoal(target=10)})
    await service.log_activity(alice.id, "squat", count_value=10)

    clock.advance(days=1)
    tomorrow = clock.today()
    result = await service.set_goals(alice.id, tomorrow, {"squat": CountGoal(target=10)})
    assert result["met"] == set()

    result = await service.log_activity(alice.id, "squat", count_value=10)
    assert result["record"].recorded_on == tomorrow
    assert result["award"].awarded == ["squat"]
    assert (await store.get_student(alice.id)).total_xp == 20


@pytest.mark.asyncio
async def test_log_activity_rejects_wrong_metric(service, alice):
    """Test a plank cannot be logged in repetitions"""
    with pytest.raises(ValidationError) as exc_info:
        await service.log_activity(alice.id, "plank", count_value=30)

    assert exc_info.value.field == "metric"


@pytest.mark.asyncio
async def test_log_activity_requires_a_quantity(service, alice):
    with pytest.raises(ValidationError):
        await service.log_activity(alice.id, "squat")


@pytest.mark.asyncio
async def test_log_activity_unknown_exercise(service, alice):
    with pytest.raises(RecordNotFoundError):
        await service.log_activity(alice.id, "swimming", count_value=3)


@pytest.mark.asyncio
async def test_attach_photo(service, store, alice):
    result = await service.log_activity(alice.id, "walk_run", steps_value=4000)

    await service.attach_photo(result["record"].id, "https://example.com/walk.jpg")

    records = await store.list_activities(alice.id)
    assert records[0].photo_url == "https://example.com/walk.jpg"


# ============================================================================
# Goal Tests
# ============================================================================

@pytest.mark.asyncio
async def test_set_goals_unknown_exercise(service, alice):
    with pytest.raises(ValidationError):
        await service.set_goals(alice.id, TODAY, {"swimming": CountGoal(target=1)})


@pytest.mark.asyncio
async def test_set_goals_rejects_metric_the_exercise_lacks(service, alice):
    """Test a repetition goal for plank (measured in seconds) is refused"""
    with pytest.raises(ValidationError) as exc_info:
        await service.set_goals(alice.id, TODAY, {"plank": CountGoal(target=10)})

    assert exc_info.value.field == "goals"
    assert exc_info.value.value == ["plank"]
    assert (await service.get_goals(alice.id)) == {}

    await service.log_activity(alice.id, "plank", time_value=600)
    assert (await service.progress_summary(alice.id))["met"] == set()


@pytest.mark.asyncio
async def test_week_plan_defaults_to_current_week(service, alice):
    await service.set_goals(alice.id, date(2024, 5, 12), {"walk_run": StepsGoal(target=3000)})
    await service.set_goals(alice.id, date(2024, 5, 11), {"squat": CountGoal(target=10)})

    assert await service.week_plan(alice.id) == ["walk_run"]


# ============================================================================
# Catalog Tests
# ============================================================================

@pytest.mark.asyncio
async def test_custom_exercise_can_be_logged(service, store, alice):
    await service.add_custom_exercise(Exercise(
        id="burpee",
        korean_name="버피",
        category=ExerciseCategory.COUNT_TIME,
        count_unit="회"
    ))
    await service.set_goals(alice.id, TODAY, {"burpee": CountGoal(target=5)})

    result = await service.log_activity(alice.id, "burpee", count_value=5)

    assert result["award"].awarded == ["burpee"]
    assert [e.id for e in await service.catalog()][-1] == "burpee"


@pytest.mark.asyncio
async def test_custom_exercise_cannot_shadow_builtin(service):
    with pytest.raises(ValidationError):
        await service.add_custom_exercise(Exercise(
            id="squat",
            korean_name="스쿼트",
            category=ExerciseCategory.COUNT_TIME,
            count_unit="회"
        ))


@pytest.mark.asyncio
async def test_custom_exercise_needs_a_unit(service):
    with pytest.raises(ValidationError):
        await service.add_custom_exercise(Exercise(
            id="yoga",
            korean_name="요가",
            category=ExerciseCategory.STEPS_DISTANCE,
            count_unit="회"
        ))


@pytest.mark.asyncio
async def test_delete_unknown_custom_exercise(service):
    with pytest.raises(RecordNotFoundError):
        await service.delete_custom_exercise("yoga")


# ============================================================================
# Progress and Ranking Tests
# ============================================================================

@pytest.mark.asyncio
async def test_progress_summary(service, clock, alice, bob):
    """Test streak, today's totals and weekly likes on the dashboard"""
    await service.log_activity(alice.id, "squat", count_value=5)
    clock.advance(days=1)
    await service.set_goals(alice.id, clock.today(), {"squat": CountGoal(target=20)})
    await service.log_activity(alice.id, "squat", count_value=15)
    await service.toggle_like(bob.id, alice.id)

    summary = await service.progress_summary(alice.id)

    assert summary["streak"] == 2
    assert summary["today"] == date(2024, 5, 16)
    assert summary["achieved"] == {"squat": 15}
    assert summary["met"] == set()
    assert summary["weekly_likes"] == 1
    assert summary["total_xp"] == 5
    assert summary["level_up_message"] is None


@pytest.mark.asyncio
async def test_class_ranking_order(service, student_factory):
    """Test XP descending, ties broken by student number"""
    await student_factory("s-1", student_number=1, total_xp=100)
    await student_factory("s-2", student_number=2, total_xp=300)
    await student_factory("s-3", student_number=3, total_xp=100)
    await student_factory("s-4", student_number=4, total_xp=0, class_name="3학년 2반")

    ranking = await service.class_ranking("3학년 1반")

    assert [entry["student"].id for entry in ranking] == ["s-2", "s-1", "s-3"]
    assert [entry["rank"] for entry in ranking] == [1, 2, 3]
    assert ranking[0]["level"].name == "운동 새내기"


@pytest.mark.asyncio
async def test_class_ranking_includes_streaks(service, alice, bob):
    await service.log_activity(alice.id, "squat", count_value=3)

    ranking = {entry["student"].id: entry for entry in await service.class_ranking("3학년 1반")}

    assert ranking[alice.id]["streak"] == 1
    assert ranking[bob.id]["streak"] == 0


@pytest.mark.asyncio
async def test_class_summary(service, clock, alice, bob, carol):
    """Test participation, activity counts and goal completion for one day"""
    await service.set_goals(alice.id, TODAY, {"squat": CountGoal(target=20)})
    await service.set_goals(bob.id, TODAY, {"squat": CountGoal(target=20), "plank": TimeGoal(target=30)})
    await service.log_activity(alice.id, "squat", count_value=20)
    await service.log_activity(bob.id, "squat", count_value=5)
    await service.log_activity(bob.id, "plank", time_value=30)

    summary = await service.class_summary("3학년 1반")

    assert summary["day"] == TODAY
    assert summary["total_students"] == 3
    assert summary["active_students"] == 2
    assert summary["participation_rate"] == 67
    assert summary["activity_count"] == 3
    assert summary["exercise_log_counts"] == {"squat": 2, "plank": 1}
    assert summary["most_logged"] == "squat"
    assert summary["goal_stats"] == [
        {"exercise_id": "squat", "students_with_goal": 2, "students_met_goal": 1},
        {"exercise_id": "plank", "students_with_goal": 1, "students_met_goal": 1},
    ]

    clock.advance(days=1)
    quiet = await service.class_summary("3학년 1반")
    assert quiet["activity_count"] == 0
    assert quiet["most_logged"] is None
    assert quiet["goal_stats"] == []


@pytest.mark.asyncio
async def test_class_summary_empty_class(service):
    summary = await service.class_summary("6학년 9반", TODAY)

    assert summary["total_students"] == 0
    assert summary["participation_rate"] == 0


@pytest.mark.asyncio
async def test_activity_history_defaults_to_this_week(service, clock, alice):
    clock.advance(days=-2)
    await service.log_activity(alice.id, "squat", count_value=10)
    await service.log_activity(alice.id, "squat", count_value=5)
    clock.advance(days=2)
    await service.log_activity(alice.id, "walk_run", steps_value=3000)

    history = await service.activity_history(alice.id)

    assert history["since"] == date(2024, 5, 12)
    assert history["until"] == TODAY
    assert [d["day"] for d in history["days"]] == [date(2024, 5, d) for d in range(12, 16)]
    totals = {d["day"]: d["totals"] for d in history["days"]}
    assert totals[date(2024, 5, 13)] == {"squat": {"count": 15}}
    assert totals[date(2024, 5, 14)] == {}
    assert totals[TODAY] == {"walk_run": {"steps": 3000}}
    assert history["period_totals"] == {"squat": {"count": 15}, "walk_run": {"steps": 3000}}


@pytest.mark.asyncio
async def test_activity_history_window_checks(service, alice):
    with pytest.raises(ValidationError):
        await service.activity_history(alice.id, since=TODAY, until=TODAY - timedelta(days=1))
    with pytest.raises(ValidationError):
        await service.activity_history(alice.id, since=TODAY - timedelta(days=200), until=TODAY)
    with pytest.raises(RecordNotFoundError):
        await service.activity_history("s-nobody")


# ============================================================================
# Peer Economy Tests
# ============================================================================

@pytest.mark.asyncio
async def test_toggle_like_uses_current_week(service, alice, bob):
    result = await service.toggle_like(bob.id, alice.id)

    assert result.week_key == "2024-05-12"
    assert result.target_total_xp == 5


@pytest.mark.asyncio
async def test_mission_round_trip(service, store, alice, bob):
    message = await service.send_message(bob.id, alice.id, MessageType.MISSION, "줄넘기 30번!")

    mailbox = await service.get_mailbox(alice.id)
    assert [m.id for m in mailbox] == [message.id]

    result = await service.complete_mission(alice.id, message.id)
    assert result["new_total_xp"] == 10


@pytest.mark.asyncio
async def test_secret_friend(service, store, alice, bob):
    await store.save_manito_assignment(ManitoAssignment(class_name="3학년 1반", pairs={alice.id: bob.id}))

    assert (await service.secret_friend(alice.id)).id == bob.id
    assert await service.secret_friend(bob.id) is None


# ============================================================================
# Exercise Tip Tests
# ============================================================================

@pytest.mark.asyncio
async def test_exercise_tip_payload(service, mock_generator, alice):
    """Test the tip request carries grade, level and today's active goals"""
    await service.set_goals(
        alice.id,
        TODAY,
        {"squat": CountGoal(target=20), "plank": TimeGoal(target=0)},
        skipped={"plank"}
    )

    tip = await service.exercise_tip(alice.id)

    assert tip.title == "줄넘기 100번 도전"
    payload = mock_generator.exercise_tip.await_args.args[0]
    assert payload.grade == "3학년"
    assert payload.gender == "female"
    assert payload.level_name == "움직새싹"
    assert payload.goals == {"스쿼트": 20}
