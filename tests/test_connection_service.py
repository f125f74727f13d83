"""
Unit tests for the connection lifecycle service.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.adapters.base import RecordKind
from app.core.exceptions import (
    ConflictException,
    ErrorCode,
    InvalidArgumentException,
    NotFoundException,
)
from app.schemas.records import Connection, ConnectionStatus, NotificationType
from app.services.connection_service import (
    ConnectionService,
    derive_connection_id,
    validate_user_id,
)
from conftest import RecordingSink, make_profile, run


@pytest.fixture
def service(seeded_gateway, sink, clock):
    return ConnectionService(seeded_gateway, sink, clock=clock)


def stored(gateway, connection_id):
    return run(gateway.get_by_id(RecordKind.CONNECTIONS, connection_id))


class StatusReadingSink(RecordingSink):
    """Records the stored connection status at the moment each notification goes out."""

    def __init__(self, gateway):
        super().__init__()
        self.gateway = gateway
        self.seen = []

    async def emit(self, recipient_id, notification_type, title, body, connection_id=None, meeting_id=None):
        record = await self.gateway.get_by_id(RecordKind.CONNECTIONS, connection_id)
        self.seen.append(record.status)
        return await super().emit(recipient_id, notification_type, title, body, connection_id=connection_id)


class TestIds:
    """Tests for id validation and derivation."""

    def test_derived_id_is_commutative(self):
        assert derive_connection_id("bob", "alice") == derive_connection_id("alice", "bob") == "match_alice_bob"

    @pytest.mark.parametrize("bad", ["", "   ", "has space", "under_score", None])
    def test_invalid_user_ids(self, bad):
        with pytest.raises(InvalidArgumentException):
            validate_user_id(bad)


class TestRequestConnection:
    """Tests for request_connection."""

    def test_creates_pending_record_and_notifies_target(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob", "  Let's swap skills  "))

        assert connection_id == "match_alice_bob"
        record = stored(seeded_gateway, connection_id)
        assert record.status == ConnectionStatus.PENDING
        assert record.requested_by == "alice"
        assert record.participants == ["alice", "bob"]
        assert record.request_message == "Let's swap skills"
        # alice needs Design (bob offers) + bob needs Python (alice offers) + same major
        assert record.score == 25

        assert sink.sent == [{
            "recipient_id": "bob",
            "type": NotificationType.CONNECTION_REQUEST,
            "title": "New Connection Request",
            "body": "Let's swap skills",
            "connection_id": "match_alice_bob",
        }]

    def test_default_body_without_message(self, service, sink):
        run(service.request_connection("alice", "bob", "   "))
        assert sink.sent[0]["body"] == "Someone wants to connect with you!"

    def test_self_request_rejected(self, service, seeded_gateway, sink):
        with pytest.raises(InvalidArgumentException) as exc_info:
            run(service.request_connection("alice", "alice"))
        assert exc_info.value.code == ErrorCode.SELF_CONNECTION
        assert run(seeded_gateway.list_all(RecordKind.CONNECTIONS)) == []
        assert sink.sent == []

    def test_unknown_user_raises_not_found(self, service):
        with pytest.raises(NotFoundException) as exc_info:
            run(service.request_connection("alice", "zed"))
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND

    def test_repeat_request_is_idempotent(self, service, seeded_gateway, sink):
        first = run(service.request_connection("alice", "bob"))
        second = run(service.request_connection("alice", "bob"))
        reverse = run(service.request_connection("bob", "alice"))

        assert first == second == reverse
        assert len(run(seeded_gateway.list_all(RecordKind.CONNECTIONS))) == 1
        assert stored(seeded_gateway, first).requested_by == "alice"
        assert len(sink.sent) == 1

    def test_request_on_active_is_noop(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        sent_before = len(sink.sent)

        run(service.request_connection("bob", "alice"))

        assert stored(seeded_gateway, connection_id).status == ConnectionStatus.ACTIVE
        assert len(sink.sent) == sent_before

    def test_rerequest_after_reject_reactivates(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob", "first"))
        first_created = stored(seeded_gateway, connection_id).created_at
        run(service.reject(connection_id, "bob"))

        run(service.request_connection("bob", "alice", "second try"))

        record = stored(seeded_gateway, connection_id)
        assert record.status == ConnectionStatus.PENDING
        assert record.requested_by == "bob"
        assert record.request_message == "second try"
        assert record.created_at > first_created
        assert sink.sent[-1]["recipient_id"] == "alice"
        assert len(run(seeded_gateway.list_all(RecordKind.CONNECTIONS))) == 1

    def test_concurrent_requests_create_one_record(self, service, seeded_gateway, sink):
        async def race():
            return await asyncio.gather(
                service.request_connection("alice", "bob"),
                service.request_connection("bob", "alice"),
            )

        ids = run(race())

        assert ids[0] == ids[1]
        assert len(run(seeded_gateway.list_all(RecordKind.CONNECTIONS))) == 1
        assert len(sink.sent) == 1

    def test_lost_creation_race_is_noop(self, seeded_gateway, sink, clock):
        service = ConnectionService(seeded_gateway, sink, clock=clock)
        winner = Connection(id="match_alice_bob", participants=["bob", "alice"], requested_by="bob")
        original_put = seeded_gateway.put

        async def put_after_winner(kind, record_id, record, only_if_absent=False):
            if kind == RecordKind.CONNECTIONS and only_if_absent:
                await original_put(kind, record_id, winner)
            return await original_put(kind, record_id, record, only_if_absent=only_if_absent)

        seeded_gateway.put = put_after_winner

        assert run(service.request_connection("alice", "bob")) == "match_alice_bob"
        assert stored(seeded_gateway, "match_alice_bob").requested_by == "bob"
        assert sink.sent == []

    def test_lost_reactivation_race_is_noop(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.reject(connection_id, "bob"))
        original_update = seeded_gateway.update

        async def update_after_winner(kind, record_id, fields, expected_version=None):
            if kind == RecordKind.CONNECTIONS and fields.get("status") == ConnectionStatus.PENDING:
                await original_update(kind, record_id, {"status": ConnectionStatus.PENDING, "requested_by": "bob"})
            return await original_update(kind, record_id, fields, expected_version=expected_version)

        seeded_gateway.update = update_after_winner

        assert run(service.request_connection("alice", "bob")) == connection_id
        record = stored(seeded_gateway, connection_id)
        assert record.status == ConnectionStatus.PENDING
        assert record.requested_by == "bob"
        assert len(sink.sent) == 1

    def test_reactivation_conflict_on_rejected_record_propagates(self, service, seeded_gateway):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.reject(connection_id, "bob"))
        original_update = seeded_gateway.update

        async def update_after_other_write(kind, record_id, fields, expected_version=None):
            if kind == RecordKind.CONNECTIONS and fields.get("status") == ConnectionStatus.PENDING:
                await original_update(kind, record_id, {"score": 99})
            return await original_update(kind, record_id, fields, expected_version=expected_version)

        seeded_gateway.update = update_after_other_write

        with pytest.raises(ConflictException):
            run(service.request_connection("alice", "bob"))
        assert stored(seeded_gateway, connection_id).status == ConnectionStatus.REJECTED

    def test_notifications_follow_acknowledged_writes(self, seeded_gateway, clock):
        sink = StatusReadingSink(seeded_gateway)
        service = ConnectionService(seeded_gateway, sink, clock=clock)

        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        run(service.reject(connection_id, "alice"))
        run(service.request_connection("alice", "bob"))

        assert sink.seen == [ConnectionStatus.PENDING, ConnectionStatus.ACTIVE, ConnectionStatus.PENDING]

    def test_notification_failure_does_not_fail_request(self, seeded_gateway, clock):
        service = ConnectionService(seeded_gateway, RecordingSink(fail=True), clock=clock)

        connection_id = run(service.request_connection("alice", "bob"))

        assert stored(seeded_gateway, connection_id).status == ConnectionStatus.PENDING


class TestAccept:
    """Tests for accept."""

    def test_accept_activates_and_notifies_requester(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob"))

        accepted = run(service.accept(connection_id, "bob"))

        assert accepted.status == ConnectionStatus.ACTIVE
        assert stored(seeded_gateway, connection_id).status == ConnectionStatus.ACTIVE
        assert sink.sent[-1]["recipient_id"] == "alice"
        assert sink.sent[-1]["type"] == NotificationType.CONNECTION_ACCEPTED
        assert sink.sent[-1]["title"] == "Connection Accepted"

    def test_notification_failure_does_not_roll_back_accept(self, service, seeded_gateway, clock):
        connection_id = run(service.request_connection("alice", "bob"))
        failing = ConnectionService(seeded_gateway, RecordingSink(fail=True), clock=clock)

        accepted = run(failing.accept(connection_id, "bob"))

        assert accepted.status == ConnectionStatus.ACTIVE
        assert stored(seeded_gateway, connection_id).status == ConnectionStatus.ACTIVE

    def test_accept_missing_raises_not_found(self, service):
        with pytest.raises(NotFoundException) as exc_info:
            run(service.accept("match_alice_bob", "bob"))
        assert exc_info.value.code == ErrorCode.CONNECTION_NOT_FOUND

    def test_requester_cannot_accept(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        with pytest.raises(InvalidArgumentException) as exc_info:
            run(service.accept(connection_id, "alice"))
        assert exc_info.value.code == ErrorCode.FORBIDDEN
        assert exc_info.value.status_code == 403

    def test_outsider_cannot_accept(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        with pytest.raises(InvalidArgumentException):
            run(service.accept(connection_id, "carol"))

    def test_accept_active_is_noop(self, service, sink):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        sent = len(sink.sent)

        again = run(service.accept(connection_id, "bob"))

        assert again.status == ConnectionStatus.ACTIVE
        assert len(sink.sent) == sent

    def test_accept_rejected_is_conflict(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.reject(connection_id, "bob"))
        with pytest.raises(ConflictException) as exc_info:
            run(service.accept(connection_id, "bob"))
        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION

    def test_concurrent_write_surfaces_conflict(self, service, seeded_gateway):
        connection_id = run(service.request_connection("alice", "bob"))
        original_get = seeded_gateway.get_by_id

        async def stale_get(kind, record_id):
            record = await original_get(kind, record_id)
            if kind == RecordKind.CONNECTIONS:
                # Someone else writes between our read and our update
                await seeded_gateway.update(kind, record_id, {"score": 99})
            return record

        seeded_gateway.get_by_id = stale_get

        with pytest.raises(ConflictException):
            run(service.accept(connection_id, "bob"))


class TestRejectAndRemove:
    """Tests for reject and remove."""

    def test_reject_sends_no_notification(self, service, seeded_gateway, sink):
        connection_id = run(service.request_connection("alice", "bob"))
        sent = len(sink.sent)

        rejected = run(service.reject(connection_id, "bob"))

        assert rejected.status == ConnectionStatus.REJECTED
        assert len(sink.sent) == sent

    def test_reject_active(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        assert run(service.reject(connection_id)).status == ConnectionStatus.REJECTED

    def test_reject_twice_is_noop(self, service, seeded_gateway):
        connection_id = run(service.request_connection("alice", "bob"))
        first = run(service.reject(connection_id))
        second = run(service.reject(connection_id))
        assert first.version == second.version

    def test_outsider_cannot_reject(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        with pytest.raises(InvalidArgumentException):
            run(service.reject(connection_id, "carol"))

    def test_remove_then_list(self, service):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.request_connection("alice", "carol"))

        run(service.remove(connection_id, "bob"))

        assert [c.id for c in run(service.list_for_user("bob"))] == []
        assert [c.id for c in run(service.list_for_user("alice"))] == ["match_alice_carol"]

    def test_remove_missing_raises_not_found(self, service):
        with pytest.raises(NotFoundException):
            run(service.remove("match_alice_bob"))

    def test_request_after_remove_starts_fresh(self, service, seeded_gateway):
        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        run(service.remove(connection_id))

        run(service.request_connection("bob", "alice"))

        record = stored(seeded_gateway, connection_id)
        assert record.status == ConnectionStatus.PENDING
        assert record.requested_by == "bob"


class TestListingAndSubscriptions:
    """Tests for list_for_user, subscribe_for_user and dedupe_by_peer."""

    def test_list_for_user_includes_both_directions(self, service):
        run(service.request_connection("alice", "bob"))
        run(service.request_connection("carol", "alice"))
        assert {c.id for c in run(service.list_for_user("alice"))} == {"match_alice_bob", "match_alice_carol"}

    def test_list_for_unknown_user_is_empty(self, service):
        assert run(service.list_for_user("nobody")) == []

    def test_subscribe_for_user_sees_peer_actions(self, service):
        snapshots = []
        unsubscribe = service.subscribe_for_user("alice", snapshots.append)

        connection_id = run(service.request_connection("alice", "bob"))
        run(service.accept(connection_id, "bob"))
        unsubscribe()
        run(service.remove(connection_id))

        assert [[c.status for c in snapshot] for snapshot in snapshots] == [
            [ConnectionStatus.PENDING],
            [ConnectionStatus.ACTIVE],
        ]

    def test_dedupe_keeps_newest_per_peer(self):
        old = Connection(
            id="legacy-1", participants=["alice", "bob"], requested_by="alice",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
        )
        new = Connection(
            id="match_alice_bob", participants=["bob", "alice"], requested_by="bob",
            created_at=datetime(2024, 2, 1, tzinfo=timezone.utc)
        )
        other = Connection(id="match_alice_carol", participants=["alice", "carol"], requested_by="alice")

        result = ConnectionService.dedupe_by_peer("alice", [old, other, new])

        assert [c.id for c in result] == ["match_alice_bob", "match_alice_carol"]

    def test_score_uses_current_profiles(self, service, seeded_gateway):
        run(seeded_gateway.put(RecordKind.USERS, "dave", make_profile("dave", major="Art")))
        connection_id = run(service.request_connection("alice", "dave"))
        assert stored(seeded_gateway, connection_id).score == 0
