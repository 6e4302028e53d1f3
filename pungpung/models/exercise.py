"""Exercise catalog models"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ExerciseCategory(str, Enum):
    """Exercise categories"""
    COUNT_TIME = "count_time"
    STEPS_DISTANCE = "steps_distance"


class Metric(str, Enum):
    """Measured quantity a goal or record can use"""
    COUNT = "count"
    TIME = "time"
    STEPS = "steps"


class Exercise(BaseModel):
    """
    Catalog entry.

    The declared unit fields decide which metric an exercise is measured in:
    squats declare count_unit, plank declares time_unit, and so on.
    """
    id: str
    korean_name: str
    category: ExerciseCategory
    count_unit: Optional[str] = None
    time_unit: Optional[str] = None
    steps_unit: Optional[str] = None
    icon_name: Optional[str] = None
    is_custom: bool = False

    def applicable_metrics(self) -> set[Metric]:
        """Metrics this exercise declares a unit for, within its category"""
        metrics = set()
        if self.category == ExerciseCategory.COUNT_TIME:
            if self.count_unit:
                metrics.add(Metric.COUNT)
            if self.time_unit:
                metrics.add(Metric.TIME)
        elif self.category == ExerciseCategory.STEPS_DISTANCE:
            if self.steps_unit:
                metrics.add(Metric.STEPS)
        return metrics


DEFAULT_EXERCISES: list[Exercise] = [
    Exercise(id="squat", korean_name="스쿼트", category=ExerciseCategory.COUNT_TIME,
             count_unit="회", icon_name="SquatIcon"),
    Exercise(id="plank", korean_name="플랭크", category=ExerciseCategory.COUNT_TIME,
             time_unit="초", icon_name="PlankIcon"),
    Exercise(id="walk_run", korean_name="걷기/달리기", category=ExerciseCategory.STEPS_DISTANCE,
             steps_unit="걸음", icon_name="Footprints"),
    Exercise(id="jump_rope", korean_name="줄넘기", category=ExerciseCategory.COUNT_TIME,
             count_unit="회", icon_name="JumpRopeIcon"),
]
