"""
Typed records stored through the persistence gateway.

These are the only shapes the core reads or writes; gateways validate
every document against them on the way in and out.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class ConnectionStatus(str, Enum):
    """Lifecycle states of a connection record."""
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"


class NotificationType(str, Enum):
    """Notification categories addressed to a user."""
    CONNECTION_REQUEST = "connection_request"
    CONNECTION_ACCEPTED = "connection_accepted"
    MEETING_SCHEDULED = "meeting_scheduled"
    MEETING_ACCEPTED = "meeting_accepted"
    MEETING_REJECTED = "meeting_rejected"
    NEW_MESSAGE = "new_message"
    PROJECT_INVITATION = "project_invitation"
    STUDY_GROUP_INVITATION = "study_group_invitation"


class UserProfile(BaseModel):
    """A student's skill profile."""
    id: str = Field(..., min_length=1, description="Identity-provider user id")
    name: str = Field("", description="Display name")
    email: str = Field("", description="Contact email")
    major: str = Field("", description="Field of study; blank marks an incomplete profile")
    college_name: str = Field("", description="College or university")
    skills_offered: List[str] = Field(default_factory=list, description="Skills the user can teach")
    skills_needed: List[str] = Field(default_factory=list, description="Skills the user wants to learn")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = Field(None, description="Optimistic concurrency token")

    @property
    def is_complete(self) -> bool:
        return bool(self.major.strip())


class Connection(BaseModel):
    """A requested, accepted or declined relationship between two users."""
    id: str = Field(..., min_length=1)
    participants: List[str] = Field(..., description="Both user ids, requester first at creation")
    requested_by: str = Field(..., description="Participant who sent the latest request")
    score: int = Field(0, ge=0, description="Compatibility score at request time")
    request_message: Optional[str] = None
    status: ConnectionStatus = ConnectionStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    version: Optional[int] = Field(None, description="Optimistic concurrency token")

    @field_validator("participants")
    @classmethod
    def _two_distinct_participants(cls, v: List[str]) -> List[str]:
        if len(v) != 2 or not all(v) or v[0] == v[1]:
            raise ValueError("participants must be exactly two distinct user ids")
        return v

    @model_validator(mode="after")
    def _requester_is_participant(self):
        if self.requested_by not in self.participants:
            raise ValueError("requested_by must be one of the participants")
        return self

    def peer_of(self, user_id: str) -> str:
        """Return the other participant."""
        if user_id not in self.participants:
            raise ValueError(f"{user_id} is not a participant of {self.id}")
        first, second = self.participants
        return second if user_id == first else first


class Notification(BaseModel):
    """An addressed event record; only ``read`` ever changes after creation."""
    id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str
    body: str
    connection_id: Optional[str] = None
    meeting_id: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    version: Optional[int] = None
