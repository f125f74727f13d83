"""
Notification sink and inbox.

The connection core emits through NotificationSink. The default sink
stores a Notification record through the persistence gateway and, when a
backend webhook is configured, forwards it there as well. NotificationInbox
is the read side used by the notification bell and page.
"""
import os
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional
from uuid import uuid4

import requests

from app.adapters.base import MembershipQuery, PersistenceGateway, RecordKind
from app.core.exceptions import (
    AppException,
    CollaboratorUnavailableException,
    ConflictException,
    ErrorCode,
    InvalidArgumentException,
    NotFoundException,
)
from app.schemas.records import Notification, NotificationType, utcnow

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Records an event addressed to a user."""

    @abstractmethod
    async def emit(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        connection_id: Optional[str] = None,
        meeting_id: Optional[str] = None
    ) -> str:
        """Create the notification and return its id."""


class WebhookForwarder:
    """Push stored notifications to the backend webhook (email/push fan-out)."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, timeout: float = 10):
        self.url = url if url is not None else os.getenv('NOTIFICATION_WEBHOOK_URL')
        self.api_key = api_key if api_key is not None else os.getenv('NOTIFICATION_WEBHOOK_API_KEY')
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.url)

    def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    def forward(self, notification: Notification) -> bool:
        """POST the notification; returns False instead of raising on failure."""
        if not self.is_configured():
            return False
        payload = notification.model_dump(mode="json", exclude={"version"})
        # Don't log payloads (PII) or headers (API key)
        logger.info(f"Forwarding notification {notification.id} ({notification.type.value}) to webhook")
        try:
            response = requests.post(self.url, json=payload, headers=self._get_headers(), timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"Notification webhook failed for {notification.id}: {e}")
            return False


class StoreNotificationSink(NotificationSink):
    """Persists notifications through the gateway; forwarding is best-effort."""

    def __init__(self, gateway: PersistenceGateway, forwarder: Optional[WebhookForwarder] = None):
        self.gateway = gateway
        self.forwarder = forwarder

    async def emit(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        connection_id: Optional[str] = None,
        meeting_id: Optional[str] = None
    ) -> str:
        if not recipient_id:
            raise InvalidArgumentException("recipient_id is required", field="recipient_id")

        notification = Notification(
            id=uuid4().hex,
            recipient_id=recipient_id,
            type=notification_type,
            title=title,
            body=body,
            connection_id=connection_id,
            meeting_id=meeting_id,
            read=False,
            created_at=utcnow(),
        )
        try:
            stored = await self.gateway.put(
                RecordKind.NOTIFICATIONS, notification.id, notification, only_if_absent=True
            )
        except AppException as e:
            raise CollaboratorUnavailableException(
                "notifications",
                f"could not store {notification_type.value} for {recipient_id}: {e.message}",
                code=ErrorCode.NOTIFICATION_BACKEND_ERROR,
                original_error=e
            ) from e

        logger.info(f"Notification {stored.id} ({notification_type.value}) -> {recipient_id}")
        if self.forwarder is not None and self.forwarder.is_configured():
            await asyncio.to_thread(self.forwarder.forward, stored)
        return stored.id


def count_unread(notifications: List[Notification]) -> int:
    return sum(1 for n in notifications if not n.read)


def _newest_first(notifications: List[Notification]) -> List[Notification]:
    return sorted(notifications, key=lambda n: n.created_at, reverse=True)


class NotificationInbox:
    """A user's notifications: listing, unread count, mark as read."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    async def list_for_user(self, user_id: str) -> List[Notification]:
        """Newest first."""
        if not user_id:
            raise InvalidArgumentException("user_id is required", field="user_id")
        records = await self.gateway.query_by_membership(RecordKind.NOTIFICATIONS, "recipient_id", user_id)
        return _newest_first(records)

    async def unread_count(self, user_id: str) -> int:
        return count_unread(await self.list_for_user(user_id))

    async def mark_read(self, notification_id: str, acting_user_id: Optional[str] = None) -> Notification:
        """Flip ``read`` to true. Already-read notifications are returned unchanged."""
        notification = await self.gateway.get_by_id(RecordKind.NOTIFICATIONS, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id, code=ErrorCode.NOTIFICATION_NOT_FOUND)
        if acting_user_id is not None and acting_user_id != notification.recipient_id:
            raise InvalidArgumentException(
                "Only the recipient can mark a notification as read",
                field="acting_user_id",
                code=ErrorCode.FORBIDDEN
            )
        if notification.read:
            return notification
        try:
            return await self.gateway.update(
                RecordKind.NOTIFICATIONS, notification_id, {"read": True},
                expected_version=notification.version
            )
        except ConflictException:
            # Another session marked it first
            current = await self.gateway.get_by_id(RecordKind.NOTIFICATIONS, notification_id)
            if current is not None and current.read:
                return current
            raise

    def subscribe(self, user_id: str, callback: Callable) -> Callable[[], None]:
        """Live inbox updates, delivered newest first."""
        def _sorted(records):
            return callback(_newest_first(records))
        return self.gateway.subscribe(
            RecordKind.NOTIFICATIONS, MembershipQuery("recipient_id", user_id), _sorted
        )
