"""
Connection and notification schemas for request/response validation.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.records import Connection, ConnectionStatus, Notification, NotificationType
from app.schemas.user import sanitize_html

MAX_REQUEST_MESSAGE_LENGTH = 500


class ConnectionCreateRequest(BaseModel):
    """Ask another user to connect. The requester is the acting user."""
    target_id: str = Field(..., min_length=1, description="User to connect with")
    request_message: Optional[str] = Field(
        None, max_length=MAX_REQUEST_MESSAGE_LENGTH, description="Optional note shown to the target"
    )

    @field_validator('request_message')
    @classmethod
    def sanitize_message(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return sanitize_html(v)


class ConnectionCreateResponse(BaseModel):
    connection_id: str


class ConnectionResponse(BaseModel):
    """A connection as seen by one of its participants."""
    connection_id: str
    participants: List[str]
    peer_id: Optional[str] = Field(None, description="The other participant, relative to the viewer")
    requested_by: str
    status: ConnectionStatus
    score: int
    request_message: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_record(cls, connection: Connection, viewer_id: Optional[str] = None) -> "ConnectionResponse":
        peer_id = None
        if viewer_id is not None and viewer_id in connection.participants:
            peer_id = connection.peer_of(viewer_id)
        return cls(
            connection_id=connection.id,
            participants=connection.participants,
            peer_id=peer_id,
            requested_by=connection.requested_by,
            status=connection.status,
            score=connection.score,
            request_message=connection.request_message,
            created_at=connection.created_at,
        )


class ConnectionListResponse(BaseModel):
    user_id: str
    total: int
    connections: List[ConnectionResponse]


class NotificationResponse(BaseModel):
    notification_id: str
    recipient_id: str
    type: NotificationType
    title: str
    body: str
    connection_id: Optional[str] = None
    meeting_id: Optional[str] = None
    read: bool
    created_at: datetime

    @classmethod
    def from_record(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            notification_id=notification.id,
            recipient_id=notification.recipient_id,
            type=notification.type,
            title=notification.title,
            body=notification.body,
            connection_id=notification.connection_id,
            meeting_id=notification.meeting_id,
            read=notification.read,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    """Newest first."""
    user_id: str
    unread_count: int
    notifications: List[NotificationResponse]
