"""Activity record models"""
from typing import Optional
from datetime import date, datetime
from uuid import uuid4
from pydantic import BaseModel, Field, model_validator

from pungpung.models.exercise import Metric


class ActivityRecord(BaseModel):
    """
    Append-only fact: one logged exercise session.

    Only photo_url may change after creation.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    student_id: str
    class_name: str
    exercise_id: str
    recorded_on: date  # local calendar day
    logged_at: datetime
    count_value: Optional[int] = Field(default=None, ge=0)
    time_value: Optional[int] = Field(default=None, ge=0)  # seconds or minutes, per exercise unit
    steps_value: Optional[int] = Field(default=None, ge=0)
    photo_url: Optional[str] = None

    @model_validator(mode='after')
    def validate_has_quantity(self) -> 'ActivityRecord':
        """A record measures at least one quantity"""
        if self.count_value is None and self.time_value is None and self.steps_value is None:
            raise ValueError("Activity record needs a count, time or steps value")
        return self

    def value_for(self, metric: Metric) -> int:
        """Measured amount for a metric (0 if not measured)"""
        value = {
            Metric.COUNT: self.count_value,
            Metric.TIME: self.time_value,
            Metric.STEPS: self.steps_value,
        }[metric]
        return value or 0
