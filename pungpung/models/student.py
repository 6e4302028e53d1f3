"""Student models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class Gender(str, Enum):
    """Student gender"""
    MALE = "male"
    FEMALE = "female"


class Student(BaseModel):
    """Student profile with its XP balance"""
    id: str
    name: str = Field(min_length=1, max_length=40)
    class_name: str  # grade + section, e.g. "3학년 1반"
    student_number: int = Field(ge=1)
    gender: Gender
    avatar_seed: str = ""
    pin: str = "0000"
    total_xp: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None

    @field_validator('pin')
    @classmethod
    def validate_pin(cls, v: str) -> str:
        """PINs are exactly 4 digits"""
        if len(v) != 4 or not v.isdigit():
            raise ValueError("PIN must be exactly 4 digits")
        return v

    @property
    def grade(self) -> str:
        """Grade part of class_name ("3학년 1반" -> "3학년")"""
        return self.class_name.split(" ")[0]


class ManitoAssignment(BaseModel):
    """Secret-friend pairing for one class: student -> the friend they support"""
    class_name: str
    pairs: dict[str, str]

    @field_validator('pairs')
    @classmethod
    def validate_pairs(cls, v: dict[str, str]) -> dict[str, str]:
        """Nobody is their own secret friend"""
        for student_id, friend_id in v.items():
            if student_id == friend_id:
                raise ValueError(f"Student {student_id} cannot be their own secret friend")
        return v
