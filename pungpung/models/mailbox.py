"""Secret-friend mailbox models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from uuid import uuid4
from pydantic import BaseModel, Field, field_validator, model_validator


class MessageType(str, Enum):
    """Mailbox message types"""
    CHEER = "cheer"
    MISSION = "mission"


class MissionStatus(str, Enum):
    """Mission lifecycle: pending -> completed, once"""
    PENDING = "pending"
    COMPLETED = "completed"


class MailboxMessage(BaseModel):
    """Message delivered to a recipient's mailbox. Immutable except read flag and mission status."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    sender_id: str
    recipient_id: str
    type: MessageType
    content: str = Field(min_length=1, max_length=500)
    is_read: bool = False
    created_at: datetime
    mission_status: Optional[MissionStatus] = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Strip whitespace; empty messages are not allowed"""
        trimmed = v.strip()
        if not trimmed:
            raise ValueError("Message content cannot be empty or only whitespace")
        return trimmed

    @model_validator(mode='after')
    def validate_mission_status(self) -> 'MailboxMessage':
        """Only missions carry a status"""
        if self.type == MessageType.MISSION and self.mission_status is None:
            self.mission_status = MissionStatus.PENDING
        if self.type == MessageType.CHEER and self.mission_status is not None:
            raise ValueError("Cheer messages have no mission status")
        return self
