"""
Pytest configuration and shared fixtures for Peer Connect tests.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from unittest.mock import patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.adapters.base import RecordKind
from app.adapters.memory import InMemoryGateway
from app.schemas.records import UserProfile
from app.services.notification_service import NotificationSink


@pytest.fixture(autouse=True)
def mock_environment():
    """Ensure environment variables are set for testing."""
    env_vars = {
        'APP_NAME': 'Peer Connect Test',
        'APP_VERSION': '1.0.0',
        'ENVIRONMENT': 'test',
        'CORS_ORIGINS': '["*"]',
        'LOG_LEVEL': 'WARNING',
        'PERSISTENCE_BACKEND': 'memory',
        'RATE_LIMIT_ENABLED': 'false',
        'CHANGE_FEED_RELAY_ENABLED': 'false',
        # DynamoDB env vars (LocalStack on port 4566); never reached in unit tests
        'AWS_REGION': 'us-east-1',
        'AWS_ACCESS_KEY_ID': 'test-access-key',
        'AWS_SECRET_ACCESS_KEY': 'test-secret-key',
        'AWS_ENDPOINT_URL': 'http://localhost:4566',
        'API_KEY': 'test-api-key',
        'NOTIFICATION_WEBHOOK_URL': '',
    }
    with patch.dict(os.environ, env_vars):
        yield


class RecordingSink(NotificationSink):
    """NotificationSink that remembers what it was asked to emit."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def emit(self, recipient_id, notification_type, title, body, connection_id=None, meeting_id=None):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append({
            "recipient_id": recipient_id,
            "type": notification_type,
            "title": title,
            "body": body,
            "connection_id": connection_id,
        })
        return f"n{len(self.sent)}"


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


def make_profile(user_id: str, major: str = "Computer Science", offered=None, needed=None, **kwargs) -> UserProfile:
    return UserProfile(
        id=user_id,
        name=kwargs.pop("name", user_id.title()),
        email=kwargs.pop("email", f"{user_id}@example.edu"),
        major=major,
        college_name=kwargs.pop("college_name", "State University"),
        skills_offered=offered or [],
        skills_needed=needed or [],
        **kwargs
    )


def run(coro):
    """Drive a coroutine from a synchronous test."""
    return asyncio.run(coro)


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def seeded_gateway(gateway):
    """Gateway holding alice, bob and carol with complementary skills."""
    profiles = [
        make_profile("alice", offered=["Python", "Go"], needed=["Design"]),
        make_profile("bob", offered=["Design"], needed=["Python"]),
        make_profile("carol", major="History", offered=["Writing"], needed=["Go"]),
    ]

    async def seed():
        for profile in profiles:
            await gateway.put(RecordKind.USERS, profile.id, profile)

    run(seed())
    return gateway
