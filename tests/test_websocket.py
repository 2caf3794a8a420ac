"""The /ws protocol: handshake, sync, mutations, conflicts and fan-out."""

from __future__ import annotations

import pytest
from starlette.websockets import WebSocketDisconnect


def _authenticate(ws, token, client_id="device-a"):
    assert ws.receive_json() == {"type": "auth_required"}
    ws.send_json({"type": "auth", "token": token, "clientId": client_id})
    reply = ws.receive_json()
    assert reply["type"] == "auth_success"
    return reply


def _create(ws, request_id="r1", **data):
    payload = {"title": "Example", "url": "https://example.com"}
    payload.update(data)
    ws.send_json({"type": "bookmark_create", "requestId": request_id, "data": payload})
    return ws.receive_json()


class TestHandshake:
    def test_auth_success_reports_user(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            reply = _authenticate(ws, make_token("alice"))

        assert reply["userId"] == "alice"
        assert isinstance(reply["serverTime"], int)

    def test_bad_token_closes_with_4001(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "auth_required"}
            ws.send_json({"type": "auth", "token": "bogus", "clientId": "d"})

            assert ws.receive_json() == {"type": "auth_error", "message": "Invalid token"}
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_mutation_before_auth_is_refused(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(
                {"type": "bookmark_delete", "requestId": "r9", "id": "x", "expectedVersion": 1}
            )

            assert ws.receive_json() == {
                "type": "error",
                "requestId": "r9",
                "code": "AUTH_REQUIRED",
                "message": "Not authenticated",
            }

    def test_ping_is_allowed_before_auth(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping", "timestamp": 1})

            reply = ws.receive_json()
        assert reply["type"] == "pong"
        assert isinstance(reply["timestamp"], int)


class TestFrameErrors:
    def test_malformed_json(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            ws.send_text("{not json")

            assert ws.receive_json() == {
                "type": "error",
                "code": "INVALID_REQUEST",
                "message": "Invalid message format",
            }

    def test_unknown_type(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            ws.send_json({"type": "bookmark_teleport", "requestId": "r1"})

            reply = ws.receive_json()
        assert reply["code"] == "INVALID_REQUEST"
        assert reply["message"] == "Unknown message type"
        assert reply["requestId"] == "r1"

    def test_missing_field_keeps_socket_open(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            ws.send_json({"type": "bookmark_update", "requestId": "r2", "id": "x"})
            assert ws.receive_json()["code"] == "INVALID_REQUEST"

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_update_of_unknown_id_is_not_found(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            ws.send_json(
                {
                    "type": "bookmark_update",
                    "requestId": "r3",
                    "id": "missing",
                    "data": {"title": "x"},
                    "expectedVersion": 1,
                }
            )

            reply = ws.receive_json()
        assert reply["code"] == "NOT_FOUND"
        assert reply["requestId"] == "r3"

    def test_bookmark_without_url_is_invalid(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            reply = _create(ws, request_id="r4", url=None)

        assert reply["type"] == "error"
        assert reply["code"] == "INVALID_REQUEST"
        assert reply["requestId"] == "r4"

    def test_update_giving_folder_a_url_is_invalid(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            folder_id = _create(ws, title="Dir", isFolder=True)["id"]
            ws.send_json(
                {
                    "type": "bookmark_update",
                    "requestId": "u5",
                    "id": folder_id,
                    "data": {"url": "https://x.example"},
                    "expectedVersion": 1,
                }
            )
            reply = ws.receive_json()

            ws.send_json({"type": "sync_request", "lastSyncVersion": 0})
            synced = ws.receive_json()

        assert reply["type"] == "error"
        assert reply["code"] == "INVALID_REQUEST"
        assert reply["requestId"] == "u5"
        assert synced["syncVersion"] == 1
        assert synced["bookmarks"][0]["url"] is None


class TestSync:
    def test_full_then_incremental(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            first = _create(ws, "r1", title="one")
            _create(ws, "r2", title="two")
            assert first["type"] == "bookmark_ack"
            assert first["syncVersion"] == 1

            ws.send_json({"type": "sync_request", "lastSyncVersion": 0})
            full = ws.receive_json()
            assert full["type"] == "sync_full"
            assert full["syncVersion"] == 2
            assert {b["title"] for b in full["bookmarks"]} == {"one", "two"}

            ws.send_json({"type": "sync_request", "lastSyncVersion": 1})
            incremental = ws.receive_json()
            assert incremental["type"] == "sync_incremental"
            assert incremental["currentVersion"] == 2
            assert [e["type"] for e in incremental["events"]] == ["create"]
            assert incremental["events"][0]["data"]["title"] == "two"
            assert incremental["events"][0]["clientId"] == "device-a"

    def test_sync_clear_sends_nothing(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            _create(ws)

            ws.send_json({"type": "sync_clear"})
            ws.send_json({"type": "sync_request", "lastSyncVersion": 0})

            reply = ws.receive_json()
        assert reply == {"type": "sync_full", "bookmarks": [], "syncVersion": 0}


class TestMutations:
    def test_conflict_reports_both_versions(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            bookmark_id = _create(ws)["id"]

            update = {
                "type": "bookmark_update",
                "id": bookmark_id,
                "data": {"title": "A"},
                "expectedVersion": 1,
            }
            ws.send_json({**update, "requestId": "u1"})
            ack = ws.receive_json()
            ws.send_json({**update, "requestId": "u2", "data": {"title": "B"}})
            conflict = ws.receive_json()

        assert ack == {"type": "bookmark_ack", "requestId": "u1", "id": bookmark_id, "syncVersion": 2}
        assert conflict["type"] == "conflict"
        assert conflict["requestId"] == "u2"
        assert conflict["id"] == bookmark_id
        assert conflict["serverVersion"]["title"] == "A"
        assert conflict["serverVersion"]["syncVersion"] == 2
        assert conflict["clientVersion"] == {"title": "B"}

    def test_delete_of_missing_row_acks_current_version(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            _create(ws)
            ws.send_json(
                {"type": "bookmark_delete", "requestId": "d1", "id": "gone", "expectedVersion": 1}
            )

            reply = ws.receive_json()
        assert reply == {"type": "bookmark_ack", "requestId": "d1", "id": "gone", "syncVersion": 1}

    def test_move_acks_with_new_version(self, client, make_token):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token())
            bookmark_id = _create(ws)["id"]
            ws.send_json(
                {
                    "type": "bookmark_move",
                    "requestId": "m1",
                    "id": bookmark_id,
                    "newParentId": "folder-1",
                    "newIndex": 4,
                    "expectedVersion": 1,
                }
            )

            reply = ws.receive_json()
        assert reply["type"] == "bookmark_ack"
        assert reply["syncVersion"] == 2


class TestFanOut:
    def test_peer_receives_change_and_originator_only_the_ack(self, client, make_token):
        token = make_token("alice")
        with client.websocket_connect("/ws") as origin, client.websocket_connect("/ws") as peer:
            _authenticate(origin, token, "laptop")
            _authenticate(peer, token, "phone")

            ack = _create(origin, "r1", title="shared")
            pushed = peer.receive_json()

            assert ack["type"] == "bookmark_ack"
            assert pushed["type"] == "sync_incremental"
            assert pushed["currentVersion"] == 1
            assert pushed["events"][0]["clientId"] == "laptop"
            assert pushed["events"][0]["bookmarkId"] == ack["id"]

            # The next frame the originator sees is its own pong, not an echo.
            origin.send_json({"type": "ping"})
            assert origin.receive_json()["type"] == "pong"

    def test_other_users_are_not_notified(self, client, make_token):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            _authenticate(alice, make_token("alice"))
            _authenticate(bob, make_token("bob"))

            _create(alice)
            bob.send_json({"type": "ping"})
            assert bob.receive_json()["type"] == "pong"

    def test_rest_mutation_is_not_pushed(self, client, make_token, auth_headers):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws, make_token("alice"))

            response = client.post(
                "/api/bookmarks",
                json={"title": "from rest", "url": "https://rest.example"},
                headers=auth_headers("alice"),
            )
            ws.send_json({"type": "ping"})
            first = ws.receive_json()

            ws.send_json({"type": "sync_request", "lastSyncVersion": 0})
            synced = ws.receive_json()

        assert response.status_code == 201
        assert first["type"] == "pong"
        assert synced["type"] == "sync_full"
        assert [b["title"] for b in synced["bookmarks"]] == ["from rest"]
