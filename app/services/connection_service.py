"""
Connection (match) lifecycle.

    (none) --request--> pending --accept--> active
                        pending --reject--> rejected --request--> pending
    any state --remove--> (none)

A connection's id is derived from the sorted participant pair, so either
user can create it without coordination and there is at most one record
per pair. Every mutation is a conditional write on the version that was
read; losing a race surfaces as ConflictException and the caller decides
again from fresh state. Notifications are sent only after the state
write is acknowledged and never fail the operation that produced them.
"""
import logging
from typing import Callable, Dict, List, Optional

from app.adapters.base import MembershipQuery, PersistenceGateway, RecordKind
from app.core.exceptions import (
    ConflictException,
    ErrorCode,
    InvalidArgumentException,
    NotFoundException,
)
from app.schemas.records import Connection, ConnectionStatus, NotificationType, UserProfile, utcnow
from app.services import scoring
from app.services.notification_service import NotificationSink
from app.utils.logging_config import LogContext, log_performance

logger = logging.getLogger(__name__)

CONNECTION_ID_PREFIX = "match"
PAIR_SEPARATOR = "_"

# States in which a new request is a no-op
LIVE_STATUSES = (ConnectionStatus.PENDING, ConnectionStatus.ACTIVE)

REQUEST_TITLE = "New Connection Request"
DEFAULT_REQUEST_BODY = "Someone wants to connect with you!"
ACCEPTED_TITLE = "Connection Accepted"
ACCEPTED_BODY = "Your connection request has been accepted!"


def validate_user_id(user_id: Optional[str], field: str = "user_id") -> str:
    """User ids must be non-empty, without whitespace or the pair separator."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidArgumentException(f"{field} is required", field=field)
    if user_id != user_id.strip() or any(ch.isspace() for ch in user_id):
        raise InvalidArgumentException(f"{field} must not contain whitespace", field=field)
    if PAIR_SEPARATOR in user_id:
        raise InvalidArgumentException(f"{field} must not contain '{PAIR_SEPARATOR}'", field=field)
    return user_id


def derive_connection_id(user_a: str, user_b: str) -> str:
    """Order-independent id for the pair: ``match_<lower>_<higher>``."""
    low, high = sorted((validate_user_id(user_a, "user_a"), validate_user_id(user_b, "user_b")))
    return PAIR_SEPARATOR.join((CONNECTION_ID_PREFIX, low, high))


class ConnectionService:
    """Request, accept, reject and remove connections between two users."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        notifier: NotificationSink,
        clock: Callable = utcnow
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

    async def _load_profile(self, user_id: str) -> UserProfile:
        profile = await self.gateway.get_by_id(RecordKind.USERS, user_id)
        if profile is None:
            raise NotFoundException("UserProfile", user_id, code=ErrorCode.USER_NOT_FOUND)
        return profile

    async def _load_connection(self, connection_id: str) -> Connection:
        if not connection_id:
            raise InvalidArgumentException("connection_id is required", field="connection_id")
        connection = await self.gateway.get_by_id(RecordKind.CONNECTIONS, connection_id)
        if connection is None:
            raise NotFoundException("Connection", connection_id, code=ErrorCode.CONNECTION_NOT_FOUND)
        return connection

    @staticmethod
    def _require_participant(connection: Connection, acting_user_id: str) -> None:
        if acting_user_id not in connection.participants:
            raise InvalidArgumentException(
                f"{acting_user_id} is not a participant of {connection.id}",
                field="acting_user_id",
                code=ErrorCode.FORBIDDEN
            )

    async def _notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        connection_id: str
    ) -> Optional[str]:
        try:
            return await self.notifier.emit(
                recipient_id, notification_type, title, body, connection_id=connection_id
            )
        except Exception as e:
            logger.warning(
                f"Could not send {notification_type.value} to {recipient_id} for {connection_id}: {e}",
                exc_info=True
            )
            return None

    @log_performance("request_connection")
    async def request_connection(
        self,
        requester_id: str,
        target_id: str,
        request_message: Optional[str] = None
    ) -> str:
        """
        Ask ``target_id`` to connect and return the connection id.

        A pending or active connection makes this a no-op. A rejected one is
        reactivated with the new requester, message, score and timestamp.
        """
        requester_id = validate_user_id(requester_id, "requester_id")
        target_id = validate_user_id(target_id, "target_id")
        if requester_id == target_id:
            raise InvalidArgumentException(
                "Cannot send a connection request to yourself",
                field="target_id",
                code=ErrorCode.SELF_CONNECTION
            )
        connection_id = derive_connection_id(requester_id, target_id)
        message = request_message.strip() if request_message else None
        message = message or None

        with LogContext(connection_id=connection_id, operation="request_connection"):
            existing = await self.gateway.get_by_id(RecordKind.CONNECTIONS, connection_id)
            if existing is not None and existing.status in LIVE_STATUSES:
                logger.info(f"Connection {connection_id} already {existing.status.value}; request ignored")
                return connection_id

            requester = await self._load_profile(requester_id)
            target = await self._load_profile(target_id)
            pair_score = scoring.score(requester, target)

            if existing is None:
                created = await self._create(connection_id, requester_id, target_id, pair_score, message)
                if not created:
                    return connection_id
                logger.info(f"Connection {connection_id} requested by {requester_id} (score {pair_score})")
            else:
                reactivated = await self._reactivate(existing, requester_id, pair_score, message)
                if not reactivated:
                    return connection_id
                logger.info(f"Connection {connection_id} reactivated by {requester_id} (score {pair_score})")

            await self._notify(
                target_id,
                NotificationType.CONNECTION_REQUEST,
                REQUEST_TITLE,
                message or DEFAULT_REQUEST_BODY,
                connection_id
            )
        return connection_id

    async def _create(
        self,
        connection_id: str,
        requester_id: str,
        target_id: str,
        pair_score: int,
        message: Optional[str]
    ) -> bool:
        """Create the pending record. Returns False when the other side created it first."""
        connection = Connection(
            id=connection_id,
            participants=[requester_id, target_id],
            requested_by=requester_id,
            score=pair_score,
            request_message=message,
            status=ConnectionStatus.PENDING,
            created_at=self.clock(),
        )
        try:
            await self.gateway.put(RecordKind.CONNECTIONS, connection_id, connection, only_if_absent=True)
            return True
        except ConflictException:
            if await self._is_live(connection_id):
                logger.info(f"Connection {connection_id} created concurrently; request ignored")
                return False
            raise

    async def _reactivate(
        self,
        existing: Connection,
        requester_id: str,
        pair_score: int,
        message: Optional[str]
    ) -> bool:
        """Move a rejected record back to pending. Returns False when another request got there first."""
        try:
            await self.gateway.update(
                RecordKind.CONNECTIONS,
                existing.id,
                {
                    "status": ConnectionStatus.PENDING,
                    "requested_by": requester_id,
                    "request_message": message,
                    "created_at": self.clock(),
                    "score": pair_score,
                },
                expected_version=existing.version
            )
            return True
        except ConflictException:
            if await self._is_live(existing.id):
                logger.info(f"Connection {existing.id} reactivated concurrently; request ignored")
                return False
            raise

    async def _is_live(self, connection_id: str) -> bool:
        current = await self.gateway.get_by_id(RecordKind.CONNECTIONS, connection_id)
        return current is not None and current.status in LIVE_STATUSES

    @log_performance("accept_connection")
    async def accept(self, connection_id: str, acting_user_id: str) -> Connection:
        """Accept a pending request. Only the participant who did not send it may accept."""
        acting_user_id = validate_user_id(acting_user_id, "acting_user_id")
        with LogContext(connection_id=connection_id, operation="accept"):
            connection = await self._load_connection(connection_id)
            self._require_participant(connection, acting_user_id)
            if acting_user_id == connection.requested_by:
                raise InvalidArgumentException(
                    "The requester cannot accept their own request",
                    field="acting_user_id",
                    code=ErrorCode.FORBIDDEN
                )
            if connection.status == ConnectionStatus.ACTIVE:
                return connection
            if connection.status != ConnectionStatus.PENDING:
                raise ConflictException(
                    f"Connection {connection_id} is {connection.status.value} and cannot be accepted",
                    resource_id=connection_id,
                    code=ErrorCode.INVALID_TRANSITION
                )

            accepted = await self.gateway.update(
                RecordKind.CONNECTIONS,
                connection_id,
                {"status": ConnectionStatus.ACTIVE},
                expected_version=connection.version
            )
            logger.info(f"Connection {connection_id} accepted by {acting_user_id}")

            await self._notify(
                accepted.requested_by,
                NotificationType.CONNECTION_ACCEPTED,
                ACCEPTED_TITLE,
                ACCEPTED_BODY,
                connection_id
            )
        return accepted

    @log_performance("reject_connection")
    async def reject(self, connection_id: str, acting_user_id: Optional[str] = None) -> Connection:
        """Move a connection to rejected from any state. Sends no notification."""
        with LogContext(connection_id=connection_id, operation="reject"):
            connection = await self._load_connection(connection_id)
            if acting_user_id is not None:
                self._require_participant(connection, validate_user_id(acting_user_id, "acting_user_id"))
            if connection.status == ConnectionStatus.REJECTED:
                return connection

            rejected = await self.gateway.update(
                RecordKind.CONNECTIONS,
                connection_id,
                {"status": ConnectionStatus.REJECTED},
                expected_version=connection.version
            )
            logger.info(f"Connection {connection_id} rejected (was {connection.status.value})")
        return rejected

    @log_performance("remove_connection")
    async def remove(self, connection_id: str, acting_user_id: Optional[str] = None) -> None:
        """Hard-delete a connection in any state."""
        with LogContext(connection_id=connection_id, operation="remove"):
            if acting_user_id is not None:
                connection = await self._load_connection(connection_id)
                self._require_participant(connection, validate_user_id(acting_user_id, "acting_user_id"))
            elif not connection_id:
                raise InvalidArgumentException("connection_id is required", field="connection_id")

            existed = await self.gateway.delete(RecordKind.CONNECTIONS, connection_id)
            if not existed:
                raise NotFoundException("Connection", connection_id, code=ErrorCode.CONNECTION_NOT_FOUND)
            logger.info(f"Connection {connection_id} removed")

    async def list_for_user(self, user_id: str) -> List[Connection]:
        """Every connection the user takes part in, in store order."""
        user_id = validate_user_id(user_id)
        return await self.gateway.query_by_membership(RecordKind.CONNECTIONS, "participants", user_id)

    def subscribe_for_user(self, user_id: str, callback: Callable) -> Callable[[], None]:
        """Live view of ``list_for_user``; returns the unsubscribe function."""
        user_id = validate_user_id(user_id)
        return self.gateway.subscribe(
            RecordKind.CONNECTIONS, MembershipQuery("participants", user_id), callback
        )

    @staticmethod
    def dedupe_by_peer(user_id: str, connections: List[Connection]) -> List[Connection]:
        """
        Keep one connection per peer, the most recently created.

        Should be a no-op given derived ids, but records written before the
        id scheme or racing during reactivation can still point at the
        same peer twice.
        """
        latest: Dict[str, Connection] = {}
        order: List[str] = []
        for connection in connections:
            if user_id not in connection.participants:
                continue
            peer = connection.peer_of(user_id)
            if peer not in latest:
                order.append(peer)
                latest[peer] = connection
            elif connection.created_at > latest[peer].created_at:
                latest[peer] = connection
        return [latest[peer] for peer in order]
