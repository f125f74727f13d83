"""
Notification inbox routes.
"""
import logging

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_notification_inbox
from app.middleware.auth import get_acting_user_id, require_same_user
from app.schemas.connection import NotificationListResponse, NotificationResponse
from app.services.notification_service import NotificationInbox, count_unread

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    user_id: str = Query(..., min_length=1),
    acting_user_id: str = Depends(get_acting_user_id),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    """The caller's notifications, newest first, with the unread count."""
    require_same_user(user_id, acting_user_id)
    notifications = await inbox.list_for_user(user_id)
    return NotificationListResponse(
        user_id=user_id,
        unread_count=count_unread(notifications),
        notifications=[NotificationResponse.from_record(n) for n in notifications]
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    acting_user_id: str = Depends(get_acting_user_id),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    notification = await inbox.mark_read(notification_id, acting_user_id)
    return NotificationResponse.from_record(notification)
