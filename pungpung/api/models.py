"""Pydantic models for API request/response validation"""
from typing import Optional, List, Dict
from datetime import date, datetime
from pydantic import BaseModel, Field

from pungpung.gamification.level_system import LevelTier
from pungpung.models.exercise import ExerciseCategory
from pungpung.models.goal import ExerciseGoal
from pungpung.models.mailbox import MessageType, MissionStatus
from pungpung.models.student import Gender


# ==========================================
# Students
# ==========================================

class CreateStudentRequest(BaseModel):
    """Request to add a student to a class"""
    name: str = Field(..., description="Display name")
    class_name: str = Field(..., description="Grade and section, e.g. '3학년 1반'")
    student_number: int = Field(..., ge=1, description="Number within the class")
    gender: Gender
    pin: str = Field(default="0000", description="4-digit login PIN")
    avatar_seed: str = ""
    student_id: Optional[str] = Field(default=None, description="Generated when omitted")


class StudentResponse(BaseModel):
    """Public student profile (never includes the PIN)"""
    id: str
    name: str
    class_name: str
    student_number: int
    gender: Gender
    avatar_seed: str
    total_xp: int


class StudentRow(BaseModel):
    """One line of a class list"""
    name: str
    student_number: int
    gender: Gender
    pin: Optional[str] = None


class CreateStudentsRequest(BaseModel):
    """Batch add; nobody is added if any row is invalid"""
    students: List[StudentRow] = Field(..., min_length=1)


class ChangeAvatarRequest(BaseModel):
    avatar_seed: str


class LoginRequest(BaseModel):
    pin: str


class ChangePinRequest(BaseModel):
    current_pin: str
    new_pin: str


# ==========================================
# Levels
# ==========================================

class LevelResponse(BaseModel):
    """A level tier; max_xp is None for the top level"""
    level: int
    name: str
    min_xp: int
    max_xp: Optional[int]

    @classmethod
    def from_tier(cls, tier: LevelTier) -> "LevelResponse":
        return cls(level=tier.level, name=tier.name, min_xp=tier.min_xp, max_xp=tier.max_xp)


# ==========================================
# Exercises and activity
# ==========================================

class ExerciseRequest(BaseModel):
    """Custom exercise definition"""
    id: str = Field(..., min_length=1, max_length=40)
    korean_name: str
    category: ExerciseCategory
    count_unit: Optional[str] = None
    time_unit: Optional[str] = None
    steps_unit: Optional[str] = None
    icon_name: Optional[str] = None


class LogActivityRequest(BaseModel):
    """Request to log an exercise session for today"""
    exercise_id: str
    count_value: Optional[int] = Field(default=None, ge=0)
    time_value: Optional[int] = Field(default=None, ge=0)
    steps_value: Optional[int] = Field(default=None, ge=0)
    photo_url: Optional[str] = None


class AttachPhotoRequest(BaseModel):
    photo_url: str


class ActivityResponse(BaseModel):
    """Result of logging activity: the record plus today's evaluation"""
    record_id: str
    recorded_on: date
    met: List[str]
    achieved: Dict[str, int]
    awarded: List[str]
    xp_awarded: int
    total_xp: Optional[int] = None
    leveled_up: bool = False
    level: Optional[LevelResponse] = None


# ==========================================
# Goals
# ==========================================

class SetGoalsRequest(BaseModel):
    """One day's goals: exercise_id -> {"kind": "count"|"time"|"steps", "target": n}"""
    goals: Dict[str, ExerciseGoal] = Field(default_factory=dict)
    skipped: List[str] = Field(default_factory=list)


class GoalDayResponse(BaseModel):
    day: date
    goals: Dict[str, ExerciseGoal]
    skipped: List[str]


class GoalsResponse(BaseModel):
    student_id: str
    days: List[GoalDayResponse]


class WeekPlanResponse(BaseModel):
    student_id: str
    week_start: date
    exercises: List[str]


# ==========================================
# Progress and ranking
# ==========================================

class ProgressResponse(BaseModel):
    """Student dashboard"""
    student: StudentResponse
    total_xp: int
    level: LevelResponse
    next_level_threshold: Optional[int]
    xp_to_next_level: int
    streak: int
    today: date
    goals: GoalDayResponse
    achieved: Dict[str, int]
    met: List[str]
    awarded: List[str]
    weekly_likes: int
    level_up_message: Optional[str] = None


class RankingEntry(BaseModel):
    rank: int
    student: StudentResponse
    total_xp: int
    level: LevelResponse
    streak: int


class RankingResponse(BaseModel):
    class_name: str
    ranking: List[RankingEntry]


class GoalStat(BaseModel):
    exercise_id: str
    students_with_goal: int
    students_met_goal: int


class ClassSummaryResponse(BaseModel):
    """One day of class participation"""
    class_name: str
    day: date
    total_students: int
    active_students: int
    participation_rate: int = Field(..., description="Whole percent of students who logged anything")
    activity_count: int
    exercise_log_counts: Dict[str, int]
    most_logged: Optional[str] = None
    goal_stats: List[GoalStat]


class ActivityDay(BaseModel):
    day: date
    totals: Dict[str, Dict[str, int]] = Field(..., description="exercise_id -> metric -> amount")


class ActivityHistoryResponse(BaseModel):
    student_id: str
    since: date
    until: date
    days: List[ActivityDay]
    period_totals: Dict[str, Dict[str, int]]


# ==========================================
# Peer economy
# ==========================================

class LikeRequest(BaseModel):
    liker_id: str


class LikeResponse(BaseModel):
    action: str = Field(..., description="like, unlike or ignored")
    target_id: str
    week_key: str
    like_count: int
    total_xp: int


class SendMessageRequest(BaseModel):
    sender_id: str
    type: MessageType
    content: str = Field(..., max_length=500)


class MessageResponse(BaseModel):
    id: str
    sender_id: str
    recipient_id: str
    type: MessageType
    content: str
    is_read: bool
    created_at: datetime
    mission_status: Optional[MissionStatus] = None


class MailboxResponse(BaseModel):
    recipient_id: str
    messages: List[MessageResponse]
    unread: int


class MissionCompletionResponse(BaseModel):
    message: MessageResponse
    completed: bool = Field(..., description="False when the mission was already completed")
    xp_awarded: int
    total_xp: int


class SecretFriendResponse(BaseModel):
    student_id: str
    friend: Optional[StudentResponse] = None


# ==========================================
# Misc
# ==========================================

class ExerciseTipResponse(BaseModel):
    title: str
    detail: str
    reasoning: str


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    database: str = Field(..., description="Storage connection status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    user_message: str = Field(..., description="Message safe to show to students")
    request_id: str
    timestamp: datetime
