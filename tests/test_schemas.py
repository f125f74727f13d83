"""
Unit tests for Pydantic schemas and validation.
Tests record invariants, input sanitization, and constraints.
"""
import pytest
from pydantic import ValidationError
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.schemas.records import Connection, ConnectionStatus, UserProfile
from app.schemas.user import MAX_SKILL_LENGTH, ProfileResponse, ProfileUpdateRequest
from app.schemas.connection import ConnectionCreateRequest, ConnectionResponse, MAX_REQUEST_MESSAGE_LENGTH


class TestConnectionRecord:
    """Tests for Connection record invariants."""

    def test_valid_connection(self):
        connection = Connection(id="match_a_b", participants=["b", "a"], requested_by="b")
        assert connection.status == ConnectionStatus.PENDING
        assert connection.score == 0
        assert connection.peer_of("a") == "b"
        assert connection.peer_of("b") == "a"

    @pytest.mark.parametrize("participants", [["a"], ["a", "a"], ["a", "b", "c"], ["a", ""]])
    def test_participants_must_be_two_distinct(self, participants):
        with pytest.raises(ValidationError):
            Connection(id="x", participants=participants, requested_by="a")

    def test_requester_must_participate(self):
        with pytest.raises(ValidationError) as exc_info:
            Connection(id="x", participants=["a", "b"], requested_by="c")
        assert "requested_by" in str(exc_info.value)

    def test_negative_score_rejected(self):
        with pytest.raises(ValidationError):
            Connection(id="x", participants=["a", "b"], requested_by="a", score=-1)

    def test_peer_of_outsider(self):
        connection = Connection(id="x", participants=["a", "b"], requested_by="a")
        with pytest.raises(ValueError):
            connection.peer_of("c")

    def test_status_from_string(self):
        connection = Connection(id="x", participants=["a", "b"], requested_by="a", status="active")
        assert connection.status == ConnectionStatus.ACTIVE


class TestUserProfileRecord:
    """Tests for UserProfile completeness."""

    @pytest.mark.parametrize("major,complete", [("CS", True), ("", False), ("   ", False)])
    def test_is_complete(self, major, complete):
        assert UserProfile(id="a", major=major).is_complete is complete


class TestProfileUpdateRequest:
    """Tests for ProfileUpdateRequest validation."""

    def test_partial_update_tracks_sent_fields(self):
        request = ProfileUpdateRequest(major="Math")
        assert request.model_dump(exclude_unset=True) == {"major": "Math"}

    def test_html_is_escaped(self):
        request = ProfileUpdateRequest(name="<script>alert(1)</script>", skills_offered=["<b>Go</b>"])
        assert "<script>" not in request.name
        assert request.skills_offered == ["&lt;b&gt;Go&lt;/b&gt;"]

    def test_text_is_trimmed(self):
        assert ProfileUpdateRequest(major="  Math ").major == "Math"

    def test_skill_too_long(self):
        with pytest.raises(ValidationError):
            ProfileUpdateRequest(skills_needed=["x" * (MAX_SKILL_LENGTH + 1)])

    def test_response_from_record(self):
        response = ProfileResponse.from_record(UserProfile(id="a", major="CS", skills_offered=["Go"]))
        assert response.user_id == "a"
        assert response.is_complete is True
        assert response.skills_offered == ["Go"]


class TestConnectionSchemas:
    """Tests for connection request/response schemas."""

    def test_request_requires_target(self):
        with pytest.raises(ValidationError):
            ConnectionCreateRequest(target_id="")

    def test_message_too_long(self):
        with pytest.raises(ValidationError):
            ConnectionCreateRequest(target_id="bob", request_message="x" * (MAX_REQUEST_MESSAGE_LENGTH + 1))

    def test_message_is_escaped(self):
        request = ConnectionCreateRequest(target_id="bob", request_message="<img src=x>")
        assert request.request_message == "&lt;img src=x&gt;"

    def test_response_peer_is_relative_to_viewer(self):
        connection = Connection(id="match_a_b", participants=["a", "b"], requested_by="a")
        assert ConnectionResponse.from_record(connection, viewer_id="b").peer_id == "a"
        assert ConnectionResponse.from_record(connection).peer_id is None
