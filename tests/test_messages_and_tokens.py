"""Wire message parsing and bearer token verification."""

from __future__ import annotations

import json
from datetime import timedelta

import jwt
import pytest

from bookmark_sync.api.exceptions import AuthenticationError
from bookmark_sync.api.models.messages import (
    BookmarkMoveMessage,
    BookmarkUpdateMessage,
    ErrorMessage,
    MessageParseError,
    SyncRequestMessage,
    parse_client_message,
)
from bookmark_sync.api.routers.auth import TokenVerifier, create_access_token
from bookmark_sync.config import AuthConfig

SECRET = "message-and-token-tests-secret-0123456789"


class TestParseClientMessage:
    def test_sync_request(self):
        message = parse_client_message('{"type": "sync_request", "lastSyncVersion": 7}')
        assert isinstance(message, SyncRequestMessage)
        assert message.last_sync_version == 7

    def test_update_only_reports_sent_fields(self):
        raw = json.dumps(
            {
                "type": "bookmark_update",
                "requestId": "r1",
                "id": "b1",
                "data": {"title": "New", "favicon": None},
                "expectedVersion": 3,
            }
        )
        message = parse_client_message(raw)

        assert isinstance(message, BookmarkUpdateMessage)
        assert message.data.changes() == {"title": "New", "favicon": None}
        assert message.data.changes(by_alias=True) == {"title": "New", "favicon": None}

    def test_move_to_root(self):
        raw = json.dumps(
            {
                "type": "bookmark_move",
                "requestId": "r1",
                "id": "b1",
                "newParentId": None,
                "newIndex": 2,
                "expectedVersion": 1,
            }
        )
        message = parse_client_message(raw)

        assert isinstance(message, BookmarkMoveMessage)
        assert message.new_parent_id is None

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "42", '{"noType": true}'])
    def test_malformed_frames(self, raw):
        with pytest.raises(MessageParseError) as exc_info:
            parse_client_message(raw)
        assert exc_info.value.message in {"Invalid message format", "Unknown message type"}

    def test_unknown_type_keeps_request_id(self):
        with pytest.raises(MessageParseError) as exc_info:
            parse_client_message('{"type": "shout", "requestId": "r5"}')
        assert exc_info.value.message == "Unknown message type"
        assert exc_info.value.request_id == "r5"

    def test_negative_sync_version_is_rejected(self):
        with pytest.raises(MessageParseError, match="Invalid message format"):
            parse_client_message('{"type": "sync_request", "lastSyncVersion": -1}')

    def test_error_message_omits_missing_request_id(self):
        wire = ErrorMessage(code="INVALID_REQUEST", message="bad").to_wire()
        assert "requestId" not in wire
        assert ErrorMessage(request_id="r1", code="X", message="m").to_wire()["requestId"] == "r1"


class TestTokenVerifier:
    def setup_method(self):
        self.config = AuthConfig(jwt_secret_key=SECRET)
        self.verifier = TokenVerifier(self.config)

    def test_round_trip(self):
        token = create_access_token("user-42", self.config)
        assert self.verifier.verify(token) == "user-42"

    def test_expired(self):
        token = create_access_token("u", self.config, expires_in=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError, match="Token expired"):
            self.verifier.verify(token)

    def test_wrong_secret(self):
        token = jwt.encode({"userId": "u"}, "another-secret-entirely-0123456789", algorithm="HS256")
        with pytest.raises(AuthenticationError, match="Invalid token"):
            self.verifier.verify(token)

    def test_falls_back_to_sub_claim(self):
        token = jwt.encode({"sub": "from-sub"}, SECRET, algorithm="HS256")
        assert self.verifier.verify(token) == "from-sub"

    def test_configured_claim_takes_priority(self):
        config = AuthConfig(jwt_secret_key=SECRET, user_claim="uid")
        token = jwt.encode({"uid": "primary", "sub": "secondary"}, SECRET, algorithm="HS256")
        assert TokenVerifier(config).verify(token) == "primary"

    def test_token_without_user_claim(self):
        token = jwt.encode({"role": "admin"}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            self.verifier.verify(token)

    def test_empty_secret_is_refused(self):
        with pytest.raises(RuntimeError):
            TokenVerifier(AuthConfig())
