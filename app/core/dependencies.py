"""
Dependency providers for the HTTP layer.

One gateway (and optional change relay) per process; services are cheap
and built per request on top of it. Tests swap the store by overriding
get_gateway in app.dependency_overrides.
"""
import os
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from app.adapters.base import PersistenceGateway
from app.adapters.change_feed import CHANGE_FEED_CHANNEL, ChangeFeed, RedisChangeRelay
from app.adapters.memory import InMemoryGateway
from app.services.connection_service import ConnectionService
from app.services.notification_service import (
    NotificationInbox,
    NotificationSink,
    StoreNotificationSink,
    WebhookForwarder,
)
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_relay() -> Optional[RedisChangeRelay]:
    """Redis relay when CHANGE_FEED_RELAY_ENABLED=true and REDIS_URL is set."""
    enabled = os.getenv('CHANGE_FEED_RELAY_ENABLED', 'false').lower() == 'true'
    redis_url = os.getenv('REDIS_URL')
    if not enabled:
        return None
    if not redis_url:
        logger.warning("CHANGE_FEED_RELAY_ENABLED is set but REDIS_URL is not; relay disabled")
        return None
    channel = os.getenv('CHANGE_FEED_CHANNEL', CHANGE_FEED_CHANNEL)
    logger.info(f"Change relay enabled on channel {channel}")
    return RedisChangeRelay(url=redis_url, channel=channel)


@lru_cache()
def get_gateway() -> PersistenceGateway:
    """Process-wide persistence gateway selected by PERSISTENCE_BACKEND."""
    backend = os.getenv('PERSISTENCE_BACKEND', 'dynamodb').lower()
    change_feed = ChangeFeed(relay=get_change_relay())
    if backend == 'memory':
        logger.warning("Using in-memory persistence; data is lost on restart")
        return InMemoryGateway(change_feed=change_feed)
    if backend == 'dynamodb':
        # Imported lazily so the memory backend never touches AWS configuration
        from app.adapters.dynamodb import DynamoDBGateway
        return DynamoDBGateway(change_feed=change_feed)
    raise ValueError(f"Unknown PERSISTENCE_BACKEND '{backend}' (expected 'dynamodb' or 'memory')")


def get_notification_sink(gateway: PersistenceGateway = Depends(get_gateway)) -> NotificationSink:
    return StoreNotificationSink(gateway, forwarder=WebhookForwarder())


def get_connection_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    sink: NotificationSink = Depends(get_notification_sink)
) -> ConnectionService:
    return ConnectionService(gateway, sink)


def get_notification_inbox(gateway: PersistenceGateway = Depends(get_gateway)) -> NotificationInbox:
    return NotificationInbox(gateway)


def get_user_service(gateway: PersistenceGateway = Depends(get_gateway)) -> UserService:
    return UserService(gateway)
