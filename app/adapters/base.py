"""
Persistence gateway contract.

The core reads and writes documents only through this interface. Every
call is a coroutine; conditional updates carry the version the caller
read so concurrent writers surface as ConflictException instead of
overwriting each other.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Type, Union

from pydantic import BaseModel

from app.adapters.change_feed import Callback, ChangeFeed, deliver
from app.schemas.records import Connection, Notification, UserProfile

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    """Document collections known to the gateway."""
    USERS = "users"
    CONNECTIONS = "connections"
    NOTIFICATIONS = "notifications"


RECORD_TYPES: Dict[RecordKind, Type[BaseModel]] = {
    RecordKind.USERS: UserProfile,
    RecordKind.CONNECTIONS: Connection,
    RecordKind.NOTIFICATIONS: Notification,
}

# Field each kind is indexed on for membership queries
MEMBERSHIP_FIELDS: Dict[RecordKind, str] = {
    RecordKind.CONNECTIONS: "participants",
    RecordKind.NOTIFICATIONS: "recipient_id",
}

_UNSET = object()


@dataclass(frozen=True)
class MembershipQuery:
    """Subscription target: every record whose ``field`` contains ``user_id``."""
    field: str
    user_id: str


def members_of(kind: RecordKind, record: Optional[BaseModel]) -> Set[str]:
    """User ids a record is indexed under."""
    field = MEMBERSHIP_FIELDS.get(kind)
    if record is None or field is None:
        return set()
    value = getattr(record, field)
    if isinstance(value, (list, tuple, set)):
        return set(value)
    return {value} if value else set()


def validate_record(kind: RecordKind, record: Union[BaseModel, Dict[str, Any]]) -> BaseModel:
    """Coerce a record or raw document into the typed model for ``kind``."""
    model = RECORD_TYPES[kind]
    if isinstance(record, model):
        return record.model_copy(deep=True)
    if isinstance(record, BaseModel):
        record = record.model_dump()
    return model.model_validate(record)


class PersistenceGateway(ABC):
    """Async document store used by the connection core."""

    service_name = "persistence"

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.change_feed = change_feed or ChangeFeed()

    @abstractmethod
    async def get_by_id(self, kind: RecordKind, record_id: str) -> Optional[BaseModel]:
        """Return the record or None."""

    @abstractmethod
    async def put(
        self,
        kind: RecordKind,
        record_id: str,
        record: Union[BaseModel, Dict[str, Any]],
        only_if_absent: bool = False
    ) -> BaseModel:
        """Write a whole record.

        With ``only_if_absent`` the write fails with ConflictException when
        a record with this id already exists.
        """

    @abstractmethod
    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> BaseModel:
        """Apply a partial update and return the stored record.

        Raises NotFoundException when the record is missing and
        ConflictException when ``expected_version`` no longer matches.
        """

    @abstractmethod
    async def delete(self, kind: RecordKind, record_id: str) -> bool:
        """Unconditionally delete; return whether a record existed."""

    @abstractmethod
    async def query_by_membership(self, kind: RecordKind, field: str, user_id: str) -> List[BaseModel]:
        """Records whose ``field`` equals or contains ``user_id``."""

    @abstractmethod
    async def list_all(self, kind: RecordKind) -> List[BaseModel]:
        """Every record of ``kind``."""

    def subscribe(
        self,
        kind: RecordKind,
        target: Union[str, MembershipQuery],
        callback: Callback
    ) -> Callable[[], None]:
        """Register a live subscription; returns the unsubscribe function."""
        kind = RecordKind(kind)
        if isinstance(target, MembershipQuery):
            return self.change_feed.watch_membership(kind.value, target.field, target.user_id, callback)
        return self.change_feed.watch_record(kind.value, target, callback)

    async def publish_change(
        self,
        kind: RecordKind,
        record_id: str,
        before: Optional[BaseModel],
        after: Optional[BaseModel]
    ) -> None:
        """Called by implementations after a write has been acknowledged."""
        members = members_of(kind, before) | members_of(kind, after)
        await self.dispatch_change(kind, record_id, members, after=after)
        if self.change_feed.relay is not None:
            await self.change_feed.relay.publish(RecordKind(kind).value, record_id, members)

    async def dispatch_change(
        self,
        kind: Union[RecordKind, str],
        record_id: str,
        members: Iterable[str],
        after: Any = _UNSET
    ) -> None:
        """Deliver current state to local subscribers of a changed record."""
        kind = RecordKind(kind)
        record_callbacks = self.change_feed.record_watchers(kind.value, record_id)
        if record_callbacks and after is _UNSET:
            after = await self._safe_read(kind, record_id)
        if record_callbacks and after is not _UNSET:
            for callback in record_callbacks:
                payload = after.model_copy(deep=True) if after is not None else None
                await deliver(callback, payload)

        for field, user_id, callbacks in self.change_feed.membership_watchers(kind.value, members):
            try:
                records = await self.query_by_membership(kind, field, user_id)
            except Exception as e:
                logger.warning(f"Could not refresh {kind.value} for subscriber {user_id}: {e}")
                continue
            for callback in callbacks:
                await deliver(callback, [r.model_copy(deep=True) for r in records])

    async def _safe_read(self, kind: RecordKind, record_id: str) -> Any:
        try:
            return await self.get_by_id(kind, record_id)
        except Exception as e:
            logger.warning(f"Could not refresh {kind.value}/{record_id} for subscribers: {e}")
            return _UNSET
