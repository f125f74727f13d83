"""DynamoDB adapter for profiles, connections and notifications."""
import os
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from pynamodb.attributes import (
    BooleanAttribute,
    ListAttribute,
    NumberAttribute,
    UnicodeAttribute,
    UTCDateTimeAttribute,
    VersionAttribute,
)
from pynamodb.exceptions import DoesNotExist, PynamoDBException
from pynamodb.indexes import AllProjection, GlobalSecondaryIndex
from pynamodb.models import Model

from app.adapters.base import PersistenceGateway, RecordKind, validate_record
from app.adapters.change_feed import ChangeFeed
from app.core.exceptions import (
    CollaboratorUnavailableException,
    ConflictException,
    InvalidArgumentException,
    NotFoundException,
)
from app.schemas.records import Connection, Notification, UserProfile

load_dotenv()

logger = logging.getLogger(__name__)

AWS_REGION = os.getenv('AWS_DEFAULT_REGION') or os.getenv('AWS_REGION', 'us-east-1')
# Only set for local development (LocalStack)
DYNAMODB_HOST = os.getenv('DYNAMODB_ENDPOINT_URL') or os.getenv('AWS_ENDPOINT_URL')

CONDITION_FAILED = 'ConditionalCheckFailedException'


class UserProfileItem(Model):
    """PynamoDB model for user skill profiles."""

    class Meta:
        table_name = os.getenv('DYNAMO_USERS_TABLE_NAME', 'peer_profiles')
        region = AWS_REGION
        host = DYNAMODB_HOST
        billing_mode = 'PAY_PER_REQUEST'

    id = UnicodeAttribute(hash_key=True, attr_name='user_id')
    name = UnicodeAttribute(default='')
    email = UnicodeAttribute(default='')
    major = UnicodeAttribute(default='')
    college_name = UnicodeAttribute(default='')
    skills_offered = ListAttribute(of=UnicodeAttribute, default=list)
    skills_needed = ListAttribute(of=UnicodeAttribute, default=list)
    created_at = UTCDateTimeAttribute(null=True)
    updated_at = UTCDateTimeAttribute(null=True)
    version = VersionAttribute()

    @classmethod
    def from_record(cls, record: UserProfile) -> 'UserProfileItem':
        return cls(
            record.id,
            name=record.name,
            email=record.email,
            major=record.major,
            college_name=record.college_name,
            skills_offered=list(record.skills_offered),
            skills_needed=list(record.skills_needed),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def derived_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def to_record(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            name=self.name or '',
            email=self.email or '',
            major=self.major or '',
            college_name=self.college_name or '',
            skills_offered=list(self.skills_offered or []),
            skills_needed=list(self.skills_needed or []),
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )


class ConnectionUserAIndex(GlobalSecondaryIndex):
    """Connections by the lexicographically lower participant."""

    class Meta:
        index_name = 'user_a_index'
        projection = AllProjection()

    user_a_id = UnicodeAttribute(hash_key=True)


class ConnectionUserBIndex(GlobalSecondaryIndex):
    """Connections by the lexicographically higher participant."""

    class Meta:
        index_name = 'user_b_index'
        projection = AllProjection()

    user_b_id = UnicodeAttribute(hash_key=True)


class ConnectionItem(Model):
    """
    PynamoDB model for connection (match) records.

    connection_id is derived from the sorted participant pair, so A-B and
    B-A resolve to the same item. user_a_id/user_b_id mirror that sorted
    pair for the membership indexes.
    """

    class Meta:
        table_name = os.getenv('DYNAMO_CONNECTIONS_TABLE_NAME', 'peer_connections')
        region = AWS_REGION
        host = DYNAMODB_HOST
        billing_mode = 'PAY_PER_REQUEST'

    id = UnicodeAttribute(hash_key=True, attr_name='connection_id')
    participants = ListAttribute(of=UnicodeAttribute)
    user_a_id = UnicodeAttribute()
    user_b_id = UnicodeAttribute()
    requested_by = UnicodeAttribute()
    score = NumberAttribute(default=0)
    request_message = UnicodeAttribute(null=True)
    status = UnicodeAttribute(default='pending')
    created_at = UTCDateTimeAttribute()
    version = VersionAttribute()

    user_a_index = ConnectionUserAIndex()
    user_b_index = ConnectionUserBIndex()

    @classmethod
    def from_record(cls, record: Connection) -> 'ConnectionItem':
        return cls(
            record.id,
            participants=list(record.participants),
            requested_by=record.requested_by,
            score=record.score,
            request_message=record.request_message,
            status=record.status.value,
            created_at=record.created_at,
            **cls.derived_fields({'participants': record.participants}),
        )

    @staticmethod
    def derived_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        if 'participants' not in fields:
            return {}
        user_a_id, user_b_id = sorted(fields['participants'])
        return {'user_a_id': user_a_id, 'user_b_id': user_b_id}

    def to_record(self) -> Connection:
        return Connection(
            id=self.id,
            participants=list(self.participants),
            requested_by=self.requested_by,
            score=int(self.score or 0),
            request_message=self.request_message,
            status=self.status,
            created_at=self.created_at,
            version=self.version,
        )


class NotificationRecipientIndex(GlobalSecondaryIndex):
    """Notifications by recipient."""

    class Meta:
        index_name = 'recipient_index'
        projection = AllProjection()

    recipient_id = UnicodeAttribute(hash_key=True)


class NotificationItem(Model):
    """PynamoDB model for user notifications."""

    class Meta:
        table_name = os.getenv('DYNAMO_NOTIFICATIONS_TABLE_NAME', 'peer_notifications')
        region = AWS_REGION
        host = DYNAMODB_HOST
        billing_mode = 'PAY_PER_REQUEST'

    id = UnicodeAttribute(hash_key=True, attr_name='notification_id')
    recipient_id = UnicodeAttribute()
    type = UnicodeAttribute()
    title = UnicodeAttribute()
    body = UnicodeAttribute()
    connection_id = UnicodeAttribute(null=True)
    meeting_id = UnicodeAttribute(null=True)
    read = BooleanAttribute(default=False)
    created_at = UTCDateTimeAttribute()
    version = VersionAttribute()

    recipient_index = NotificationRecipientIndex()

    @classmethod
    def from_record(cls, record: Notification) -> 'NotificationItem':
        return cls(
            record.id,
            recipient_id=record.recipient_id,
            type=record.type.value,
            title=record.title,
            body=record.body,
            connection_id=record.connection_id,
            meeting_id=record.meeting_id,
            read=record.read,
            created_at=record.created_at,
        )

    @staticmethod
    def derived_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def to_record(self) -> Notification:
        return Notification(
            id=self.id,
            recipient_id=self.recipient_id,
            type=self.type,
            title=self.title,
            body=self.body,
            connection_id=self.connection_id,
            meeting_id=self.meeting_id,
            read=bool(self.read),
            created_at=self.created_at,
            version=self.version,
        )


ITEM_MODELS: Dict[RecordKind, Type[Model]] = {
    RecordKind.USERS: UserProfileItem,
    RecordKind.CONNECTIONS: ConnectionItem,
    RecordKind.NOTIFICATIONS: NotificationItem,
}

MEMBERSHIP_INDEXES = {
    (RecordKind.CONNECTIONS, 'participants'): ('user_a_index', 'user_b_index'),
    (RecordKind.NOTIFICATIONS, 'recipient_id'): ('recipient_index',),
}


def build_update_actions(model_cls: Type[Model], fields: Dict[str, Any]) -> list:
    """Translate record field changes into PynamoDB update actions."""
    if 'id' in fields or 'version' in fields:
        raise InvalidArgumentException("id and version cannot be updated", field='id')
    actions = []
    for name, value in {**fields, **model_cls.derived_fields(fields)}.items():
        attribute = getattr(model_cls, name, None)
        if attribute is None:
            raise InvalidArgumentException(f"Unknown field '{name}'", field=name)
        if value is None:
            actions.append(attribute.remove())
            continue
        if isinstance(value, Enum):
            value = value.value
        actions.append(attribute.set(value))
    return actions


class DynamoDBGateway(PersistenceGateway):
    """
    PersistenceGateway over PynamoDB.

    Conditional writes use PynamoDB's VersionAttribute: every save/update
    is conditioned on the version that was read, and a failed condition
    surfaces as ConflictException. PynamoDB is synchronous, so calls run
    in a worker thread.
    """

    service_name = "dynamodb"

    def __init__(self, change_feed: Optional[ChangeFeed] = None, models: Optional[Dict[RecordKind, Type[Model]]] = None):
        super().__init__(change_feed)
        self.models = models or ITEM_MODELS

    async def _call(self, fn: Callable, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except DoesNotExist:
            raise
        except PynamoDBException as e:
            if e.cause_response_code == CONDITION_FAILED:
                raise ConflictException(
                    "Record changed concurrently", original_error=e
                ) from e
            logger.error(f"DynamoDB call {getattr(fn, '__name__', fn)} failed: {e}")
            raise CollaboratorUnavailableException(self.service_name, str(e), original_error=e) from e

    async def _get_item(self, kind: RecordKind, record_id: str) -> Optional[Model]:
        try:
            return await self._call(self.models[kind].get, record_id, consistent_read=True)
        except DoesNotExist:
            return None

    async def get_by_id(self, kind: RecordKind, record_id: str) -> Optional[BaseModel]:
        item = await self._get_item(RecordKind(kind), record_id)
        return item.to_record() if item is not None else None

    async def put(
        self,
        kind: RecordKind,
        record_id: str,
        record: Union[BaseModel, Dict[str, Any]],
        only_if_absent: bool = False
    ) -> BaseModel:
        kind = RecordKind(kind)
        model_cls = self.models[kind]
        record = validate_record(kind, record)
        if record.id != record_id:
            raise InvalidArgumentException("record id does not match key", field='id')
        item = model_cls.from_record(record)

        if only_if_absent:
            before = None
            try:
                await self._call(item.save, condition=model_cls.id.does_not_exist())
            except ConflictException as e:
                raise ConflictException(
                    f"{kind.value} record already exists", resource_id=record_id, original_error=e.original_error
                ) from e
        else:
            current = await self._get_item(kind, record_id)
            before = current.to_record() if current is not None else None
            if current is not None:
                item.version = current.version
            await self._call(item.save, add_version_condition=False)

        stored = item.to_record()
        await self.publish_change(kind, record_id, before, stored)
        return stored

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> BaseModel:
        kind = RecordKind(kind)
        model_cls = self.models[kind]
        actions = build_update_actions(model_cls, fields)

        item = await self._get_item(kind, record_id)
        if item is None:
            raise NotFoundException(kind.value, record_id)
        if expected_version is not None and item.version != expected_version:
            raise ConflictException(
                f"{kind.value}/{record_id} changed (expected v{expected_version}, found v{item.version})",
                resource_id=record_id
            )
        before = item.to_record()

        # Conditioned on item.version by PynamoDB
        await self._call(item.update, actions=actions)

        stored = item.to_record()
        await self.publish_change(kind, record_id, before, stored)
        return stored

    async def delete(self, kind: RecordKind, record_id: str) -> bool:
        kind = RecordKind(kind)
        model_cls = self.models[kind]
        current = await self._get_item(kind, record_id)
        if current is None:
            return False
        try:
            await self._call(current.delete, condition=model_cls.id.exists(), add_version_condition=False)
        except ConflictException:
            # Deleted by someone else in the meantime
            return False
        await self.publish_change(kind, record_id, current.to_record(), None)
        return True

    async def query_by_membership(self, kind: RecordKind, field: str, user_id: str) -> List[BaseModel]:
        kind = RecordKind(kind)
        index_names = MEMBERSHIP_INDEXES.get((kind, field))
        if not index_names:
            raise InvalidArgumentException(f"{kind.value} has no membership index on '{field}'", field=field)
        model_cls = self.models[kind]

        results: Dict[str, BaseModel] = {}
        for index_name in index_names:
            index = getattr(model_cls, index_name)
            items = await self._call(lambda: list(index.query(user_id)))
            for item in items:
                results.setdefault(item.id, item.to_record())
        return list(results.values())

    async def list_all(self, kind: RecordKind) -> List[BaseModel]:
        model_cls = self.models[RecordKind(kind)]
        items = await self._call(lambda: list(model_cls.scan()))
        return [item.to_record() for item in items]
