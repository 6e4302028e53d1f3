"""API routes for the progress engine"""
import logging
from datetime import date, datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, Response, status

from pungpung.api.auth import verify_api_key
from pungpung.api.middleware import limiter
from pungpung.api.models import (
    CreateStudentRequest, CreateStudentsRequest, ChangeAvatarRequest, StudentResponse,
    LoginRequest, ChangePinRequest,
    LevelResponse, ExerciseRequest, LogActivityRequest, AttachPhotoRequest, ActivityResponse,
    SetGoalsRequest, GoalDayResponse, GoalsResponse, WeekPlanResponse,
    ProgressResponse, RankingEntry, RankingResponse, ClassSummaryResponse, ActivityHistoryResponse,
    LikeRequest, LikeResponse, SendMessageRequest, MessageResponse, MailboxResponse,
    MissionCompletionResponse, SecretFriendResponse,
    ExerciseTipResponse, HealthCheckResponse,
)
from pungpung.gamification.level_system import LEVEL_TIERS
from pungpung.models.exercise import Exercise
from pungpung.models.goal import GoalLedgerEntry
from pungpung.models.mailbox import MailboxMessage
from pungpung.models.student import Student
from pungpung.services.progress_service import ProgressService
from pungpung.utils.datetime_helpers import week_start

logger = logging.getLogger(__name__)

router = APIRouter()


def get_progress_service(request: Request) -> ProgressService:
    return request.app.state.container.progress_service


def _student(student: Student) -> StudentResponse:
    return StudentResponse(
        id=student.id,
        name=student.name,
        class_name=student.class_name,
        student_number=student.student_number,
        gender=student.gender,
        avatar_seed=student.avatar_seed,
        total_xp=student.total_xp
    )


def _goal_day(entry: GoalLedgerEntry) -> GoalDayResponse:
    return GoalDayResponse(day=entry.day, goals=entry.goals, skipped=sorted(entry.skipped))


def _message(message: MailboxMessage) -> MessageResponse:
    return MessageResponse(**message.model_dump())


# ==========================================
# Students
# ==========================================

@router.post("/api/v1/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_student(
    request: Request,
    body: CreateStudentRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Add a student to a class (Rate limit: 30/minute)"""
    student = await service.create_student(
        name=body.name,
        class_name=body.class_name,
        student_number=body.student_number,
        gender=body.gender,
        pin=body.pin,
        avatar_seed=body.avatar_seed,
        student_id=body.student_id
    )
    return _student(student)


@router.delete("/api/v1/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def delete_student(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Delete a student and all their records"""
    await service.delete_student(student_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/v1/students/{student_id}/login", response_model=StudentResponse)
@limiter.limit("20/minute")
async def login(
    request: Request,
    student_id: str,
    body: LoginRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """PIN login (Rate limit: 20/minute to slow down PIN guessing)"""
    return _student(await service.verify_pin(student_id, body.pin))


@router.put("/api/v1/students/{student_id}/pin", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
async def change_pin(
    request: Request,
    student_id: str,
    body: ChangePinRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    await service.change_pin(student_id, body.current_pin, body.new_pin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/api/v1/students/{student_id}/avatar", response_model=StudentResponse)
@limiter.limit("30/minute")
async def change_avatar(
    request: Request,
    student_id: str,
    body: ChangeAvatarRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    return _student(await service.change_avatar(student_id, body.avatar_seed))


@router.post("/api/v1/classes/{class_name}/students", response_model=List[StudentResponse],
             status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_students(
    request: Request,
    class_name: str,
    body: CreateStudentsRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Add a class list in one request (Rate limit: 10/minute)"""
    students = await service.create_students(class_name, [row.model_dump() for row in body.students])
    return [_student(student) for student in students]


@router.get("/api/v1/classes/{class_name}/summary", response_model=ClassSummaryResponse)
@limiter.limit("60/minute")
async def class_summary(
    request: Request,
    class_name: str,
    day: Optional[date] = None,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Participation and goal completion for one day (defaults to today)"""
    return ClassSummaryResponse(**await service.class_summary(class_name, day))


@router.get("/api/v1/classes/{class_name}/ranking", response_model=RankingResponse)
@limiter.limit("60/minute")
async def class_ranking(
    request: Request,
    class_name: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Class leaderboard with levels and streaks"""
    entries = await service.class_ranking(class_name)
    return RankingResponse(
        class_name=class_name,
        ranking=[
            RankingEntry(
                rank=entry["rank"],
                student=_student(entry["student"]),
                total_xp=entry["total_xp"],
                level=LevelResponse.from_tier(entry["level"]),
                streak=entry["streak"]
            )
            for entry in entries
        ]
    )


@router.get("/api/v1/levels", response_model=List[LevelResponse])
async def level_guide():
    """All level tiers"""
    return [LevelResponse.from_tier(tier) for tier in LEVEL_TIERS]


# ==========================================
# Exercises and activity
# ==========================================

@router.get("/api/v1/exercises", response_model=List[Exercise])
@limiter.limit("60/minute")
async def list_exercises(
    request: Request,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    return await service.catalog()


@router.post("/api/v1/exercises", response_model=Exercise, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def add_custom_exercise(
    request: Request,
    body: ExerciseRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    return await service.add_custom_exercise(Exercise(**body.model_dump(), is_custom=True))


@router.delete("/api/v1/exercises/{exercise_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def delete_custom_exercise(
    request: Request,
    exercise_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    await service.delete_custom_exercise(exercise_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/v1/students/{student_id}/activities", response_model=ActivityResponse,
             status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def log_activity(
    request: Request,
    student_id: str,
    body: LogActivityRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """
    Log an exercise session for today

    Re-evaluates today's goals and pays any newly met goal.
    Rate limit: 60/minute
    """
    result = await service.log_activity(
        student_id,
        body.exercise_id,
        count_value=body.count_value,
        time_value=body.time_value,
        steps_value=body.steps_value,
        photo_url=body.photo_url
    )
    award = result["award"]
    return ActivityResponse(
        record_id=result["record"].id,
        recorded_on=result["record"].recorded_on,
        met=sorted(result["met"]),
        achieved=result["achieved"],
        awarded=award.awarded,
        xp_awarded=award.xp_awarded,
        total_xp=award.new_total_xp,
        leveled_up=award.leveled_up,
        level=LevelResponse.from_tier(award.new_level) if award.new_level else None
    )


@router.put("/api/v1/activities/{record_id}/photo", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def attach_photo(
    request: Request,
    record_id: str,
    body: AttachPhotoRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Attach a proof photo URL to an existing record"""
    await service.attach_photo(record_id, body.photo_url)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==========================================
# Goals
# ==========================================

@router.put("/api/v1/students/{student_id}/goals/{day}", response_model=GoalDayResponse)
@limiter.limit("30/minute")
async def set_goals(
    request: Request,
    student_id: str,
    day: date,
    body: SetGoalsRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Set one day's goals; other days are untouched"""
    result = await service.set_goals(student_id, day, body.goals, body.skipped)
    return _goal_day(result["entry"])


@router.get("/api/v1/students/{student_id}/goals", response_model=GoalsResponse)
@limiter.limit("60/minute")
async def get_goals(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    ledger = await service.get_goals(student_id)
    return GoalsResponse(student_id=student_id, days=[_goal_day(entry) for entry in ledger.values()])


@router.get("/api/v1/students/{student_id}/week-plan", response_model=WeekPlanResponse)
@limiter.limit("60/minute")
async def week_plan(
    request: Request,
    student_id: str,
    start: Optional[date] = None,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Exercises planned for a week (defaults to the current week)"""
    week = start or week_start(service.clock.today())
    return WeekPlanResponse(
        student_id=student_id,
        week_start=week,
        exercises=await service.week_plan(student_id, week)
    )


# ==========================================
# Progress
# ==========================================

@router.get("/api/v1/students/{student_id}/progress", response_model=ProgressResponse)
@limiter.limit("60/minute")
async def progress(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """XP, level, streak and today's goal progress"""
    summary = await service.progress_summary(student_id)
    message = summary["level_up_message"]
    return ProgressResponse(
        student=_student(summary["student"]),
        total_xp=summary["total_xp"],
        level=LevelResponse.from_tier(summary["level"]),
        next_level_threshold=summary["next_level_threshold"],
        xp_to_next_level=summary["xp_to_next_level"],
        streak=summary["streak"],
        today=summary["today"],
        goals=_goal_day(summary["goals"]),
        achieved=summary["achieved"],
        met=sorted(summary["met"]),
        awarded=sorted(summary["awarded"]),
        weekly_likes=summary["weekly_likes"],
        level_up_message=message.text if message else None
    )


@router.get("/api/v1/students/{student_id}/activity-history", response_model=ActivityHistoryResponse)
@limiter.limit("60/minute")
async def activity_history(
    request: Request,
    student_id: str,
    since: Optional[date] = None,
    until: Optional[date] = None,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Daily totals per exercise (defaults to this week so far)"""
    history = await service.activity_history(student_id, since, until)
    return ActivityHistoryResponse(student_id=student_id, **history)


@router.get("/api/v1/students/{student_id}/exercise-tip", response_model=ExerciseTipResponse)
@limiter.limit("10/minute")
async def exercise_tip(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Personalized exercise tip (Rate limit: 10/minute, text generation is expensive)"""
    tip = await service.exercise_tip(student_id)
    return ExerciseTipResponse(**tip.model_dump())


# ==========================================
# Peer economy
# ==========================================

@router.post("/api/v1/students/{target_id}/likes", response_model=LikeResponse)
@limiter.limit("60/minute")
async def toggle_like(
    request: Request,
    target_id: str,
    body: LikeRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Like or unlike a classmate for this week"""
    result = await service.toggle_like(body.liker_id, target_id)
    return LikeResponse(
        action=result.action.value,
        target_id=result.target_id,
        week_key=result.week_key,
        like_count=result.like_count,
        total_xp=result.target_total_xp
    )


@router.post("/api/v1/students/{recipient_id}/mailbox", response_model=MessageResponse,
             status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def send_message(
    request: Request,
    recipient_id: str,
    body: SendMessageRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Send a cheer or a mission (one mission per sender per day)"""
    message = await service.send_message(body.sender_id, recipient_id, body.type, body.content)
    return _message(message)


@router.get("/api/v1/students/{student_id}/mailbox", response_model=MailboxResponse)
@limiter.limit("60/minute")
async def get_mailbox(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    messages = await service.get_mailbox(student_id)
    return MailboxResponse(
        recipient_id=student_id,
        messages=[_message(m) for m in messages],
        unread=sum(1 for m in messages if not m.is_read)
    )


@router.post("/api/v1/students/{student_id}/mailbox/{message_id}/read",
             status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
async def mark_read(
    request: Request,
    student_id: str,
    message_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    await service.mark_read(student_id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/v1/students/{student_id}/mailbox/{message_id}/complete",
             response_model=MissionCompletionResponse)
@limiter.limit("30/minute")
async def complete_mission(
    request: Request,
    student_id: str,
    message_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Complete a mission; completing it again pays nothing"""
    result = await service.complete_mission(student_id, message_id)
    return MissionCompletionResponse(
        message=_message(result["message"]),
        completed=result["completed"],
        xp_awarded=result["xp_awarded"],
        total_xp=result["new_total_xp"]
    )


@router.get("/api/v1/students/{student_id}/secret-friend", response_model=SecretFriendResponse)
@limiter.limit("30/minute")
async def secret_friend(
    request: Request,
    student_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    friend = await service.secret_friend(student_id)
    return SecretFriendResponse(
        student_id=student_id,
        friend=_student(friend) if friend else None
    )


# ==========================================
# Operations
# ==========================================

@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    storage_status = await request.app.state.container.store.health_check()
    return HealthCheckResponse(
        status="healthy" if storage_status == "connected" else "degraded",
        database=storage_status,
        timestamp=datetime.now()
    )


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes all application metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
