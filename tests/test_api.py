"""
Integration tests for the HTTP surface.
Uses the in-memory Mongo client and a mocked avatar store.
"""

import pytest
from unittest.mock import AsyncMock, Mock
from fastapi.testclient import TestClient
from fastapi import WebSocketDisconnect

from chatsync.database.connection import set_database
from chatsync.main import app
from chatsync.repositories.account_repository import AccountRepository
from chatsync.repositories.token_repository import RevokedTokenRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_user_service
from chatsync.utils.realtime_bus import LocalBus, set_bus


@pytest.fixture
def client(db):
    storage = Mock()
    storage.put = AsyncMock(side_effect=lambda path, data, content_type: f"https://chat.test/avatars/{path}")
    set_database(db)
    set_bus(LocalBus())
    app.dependency_overrides[get_user_service] = lambda: UserService(AccountRepository(db), UserRepository(db), storage, RevokedTokenRepository(db))
    yield TestClient(app)
    app.dependency_overrides.clear()
    set_bus(None)
    set_database(None)


def signup(client, email):
    response = client.post(
        "/auth/signup",
        data={"email": email, "password": "secret123"},
        files={"avatar": ("me.jpg", b"jpeg-bytes", "image/jpeg")},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"]["uid"], {"Authorization": f"Bearer {body['access_token']}"}


def receive_until(websocket, predicate, limit=50):
    """Read frames until one matches; snapshots may be coalesced."""
    for _ in range(limit):
        frame = websocket.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame never arrived")


class TestAuthEndpoints:

    def test_signup_without_avatar_is_rejected(self, client):
        response = client.post("/auth/signup", data={"email": "alice@chatsync.io", "password": "secret123"})

        assert response.status_code == 400
        assert response.json()["code"] == "missing_avatar"

    def test_login_and_me(self, client):
        uid, _ = signup(client, "alice@chatsync.io")

        response = client.post("/auth/login", json={"email": "alice@chatsync.io", "password": "secret123"})
        assert response.status_code == 200
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}

        me = client.get("/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["uid"] == uid
        assert me.json()["username"] == "alice"

    def test_wrong_password_is_401(self, client):
        signup(client, "alice@chatsync.io")

        response = client.post("/auth/login", json={"email": "alice@chatsync.io", "password": "wrong-pass"})

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    def test_logout_revokes_the_token(self, client):
        _, headers = signup(client, "alice@chatsync.io")

        response = client.post("/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["is_logged_out"] is True
        assert response.json()["user"] is None

        me = client.get("/auth/me", headers=headers)
        assert me.status_code == 401
        assert me.json()["detail"] == "Token has been revoked"

        again = client.post("/auth/login", json={"email": "alice@chatsync.io", "password": "secret123"})
        fresh = {"Authorization": f"Bearer {again.json()['access_token']}"}
        assert client.get("/auth/me", headers=fresh).status_code == 200

    def test_logout_requires_a_token(self, client):
        response = client.post("/auth/logout")

        assert response.status_code == 401

    def test_missing_token_is_401(self, client):
        response = client.get("/users")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_garbage_token_is_401(self, client):
        response = client.get("/users", headers={"Authorization": "Bearer not.a.jwt"})

        assert response.status_code == 401


class TestChatEndpoints:

    def test_directory_excludes_caller(self, client):
        alice_uid, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, _ = signup(client, "bob@chatsync.io")

        response = client.get("/users", headers=alice_headers)

        assert [u["uid"] for u in response.json()["users"]] == [bob_uid]

    def test_send_then_read_history_and_recent_messages(self, client):
        alice_uid, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, bob_headers = signup(client, "bob@chatsync.io")

        sent = client.post(f"/messages/{bob_uid}", json={"text": "hi bob"}, headers=alice_headers)
        assert sent.status_code == 201

        history = client.get(f"/messages/{alice_uid}", headers=bob_headers).json()["items"]
        assert [m["text"] for m in history] == ["hi bob"]
        assert history[0]["from_id"] == alice_uid

        recent = client.get("/recent_messages", headers=bob_headers).json()["items"]
        assert recent[0]["peer_id"] == alice_uid
        assert recent[0]["unread_messages_count"] == 1
        assert recent[0]["email"] == "alice@chatsync.io"

    def test_send_to_unknown_user_is_404(self, client):
        _, alice_headers = signup(client, "alice@chatsync.io")

        response = client.post("/messages/nobody", json={"text": "hi"}, headers=alice_headers)

        assert response.status_code == 404

    def test_empty_text_is_accepted(self, client):
        _, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, _ = signup(client, "bob@chatsync.io")

        response = client.post(f"/messages/{bob_uid}", json={}, headers=alice_headers)

        assert response.status_code == 201


def token_of(headers):
    return headers["Authorization"].split(" ")[1]


class TestWebSockets:

    def test_recent_messages_socket_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/recent_messages/ws?token=not.a.jwt"):
                pass

        assert exc_info.value.code == 4401

    def test_chat_socket_rejects_missing_token(self, client):
        bob_uid, _ = signup(client, "bob@chatsync.io")

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/messages/ws/{bob_uid}"):
                pass

        assert exc_info.value.code == 4401

    def test_chat_socket_rejects_revoked_token(self, client):
        _, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, _ = signup(client, "bob@chatsync.io")
        client.post("/auth/logout", headers=alice_headers)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/messages/ws/{bob_uid}?token={token_of(alice_headers)}"):
                pass

        assert exc_info.value.code == 4401

    def test_chat_socket_rejects_unknown_peer(self, client):
        _, alice_headers = signup(client, "alice@chatsync.io")

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/messages/ws/nobody?token={token_of(alice_headers)}"):
                pass

        assert exc_info.value.code == 4404

    def test_recent_messages_socket_streams_the_list(self, client):
        alice_uid, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, bob_headers = signup(client, "bob@chatsync.io")
        client.post(f"/messages/{bob_uid}", json={"text": "hi bob"}, headers=alice_headers)

        with client.websocket_connect(f"/recent_messages/ws?token={token_of(bob_headers)}") as websocket:
            frame = receive_until(websocket, lambda f: len(f.get("recent_messages", [])) == 1)

        assert frame["owner_id"] == bob_uid
        assert frame["state"] == "subscribed"
        entry = frame["recent_messages"][0]
        assert entry["peer_id"] == alice_uid
        assert entry["text"] == "hi bob"
        assert entry["unread_messages_count"] == 1

    def test_chat_socket_draft_and_send(self, client):
        alice_uid, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, bob_headers = signup(client, "bob@chatsync.io")

        with client.websocket_connect(f"/messages/ws/{bob_uid}?token={token_of(alice_headers)}") as websocket:
            receive_until(websocket, lambda f: f.get("state") == "subscribed" and f.get("count", 0) >= 1)

            websocket.send_json({"draft": "typing..."})
            receive_until(websocket, lambda f: f.get("draft") == "typing...")

            websocket.send_json({"text": "hi bob"})
            frame = receive_until(websocket, lambda f: len(f.get("messages", [])) == 1 and f.get("draft") == "")

        assert frame["messages"][0]["text"] == "hi bob"
        assert frame["messages"][0]["from_id"] == alice_uid
        history = client.get(f"/messages/{alice_uid}", headers=bob_headers).json()["items"]
        assert [m["text"] for m in history] == ["hi bob"]

    def test_chat_socket_rejects_bad_frames(self, client):
        alice_uid, alice_headers = signup(client, "alice@chatsync.io")
        bob_uid, bob_headers = signup(client, "bob@chatsync.io")

        with client.websocket_connect(f"/messages/ws/{bob_uid}?token={token_of(alice_headers)}") as websocket:
            websocket.send_text("not json")
            assert receive_until(websocket, lambda f: "error" in f)["error"] == "Invalid message payload"

            websocket.send_json({"text": 123})
            assert receive_until(websocket, lambda f: "error" in f)["error"] == "Message text must be a string"

        # nothing unreadable reached the store
        assert client.get(f"/messages/{alice_uid}", headers=bob_headers).json()["items"] == []
