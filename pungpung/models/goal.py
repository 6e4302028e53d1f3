"""Goal ledger models"""
from typing import Annotated, Literal, Union
from datetime import date
from pydantic import BaseModel, Field, TypeAdapter, model_validator

from pungpung.models.exercise import Metric


class CountGoal(BaseModel):
    """Target number of repetitions"""
    kind: Literal["count"] = "count"
    target: int = Field(ge=0)

    @property
    def metric(self) -> Metric:
        return Metric.COUNT


class TimeGoal(BaseModel):
    """Target duration"""
    kind: Literal["time"] = "time"
    target: int = Field(ge=0)

    @property
    def metric(self) -> Metric:
        return Metric.TIME


class StepsGoal(BaseModel):
    """Target step count"""
    kind: Literal["steps"] = "steps"
    target: int = Field(ge=0)

    @property
    def metric(self) -> Metric:
        return Metric.STEPS


ExerciseGoal = Annotated[Union[CountGoal, TimeGoal, StepsGoal], Field(discriminator="kind")]

exercise_goal_adapter = TypeAdapter(ExerciseGoal)


class GoalLedgerEntry(BaseModel):
    """One student's goals for one calendar day"""
    day: date
    goals: dict[str, ExerciseGoal] = Field(default_factory=dict)
    skipped: set[str] = Field(default_factory=set)

    @model_validator(mode='after')
    def validate_skipped_has_no_target(self) -> 'GoalLedgerEntry':
        """An exercise cannot have a positive target and be skipped on the same day"""
        conflicts = sorted(
            exercise_id for exercise_id in self.skipped
            if exercise_id in self.goals and self.goals[exercise_id].target > 0
        )
        if conflicts:
            raise ValueError(f"Exercises both targeted and skipped: {', '.join(conflicts)}")
        return self

    def goals_payload(self) -> dict[str, dict]:
        """JSON-ready goals for storage"""
        return {exercise_id: goal.model_dump() for exercise_id, goal in self.goals.items()}
