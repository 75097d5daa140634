# tests/test_api.py

import asyncio
import base64
import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError
from main import fastapi_app
from infrastructure.postgres_connection import get_db_session
from infrastructure.redis_connection import get_redis


@pytest.fixture
async def client(session_factory, redis_client):
    """HTTP client bound to the app with the test database and fakeredis"""
    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db_session] = override_db_session
    fastapi_app.dependency_overrides[get_redis] = lambda: redis_client

    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()


async def signup(client, username: str, full_name: str, password: str = "long-enough-password") -> dict:
    response = await client.post("/api/users/signup", json={
        "username": username,
        "password": password,
        "fullName": full_name,
    })
    assert response.status_code == 201, response.text
    return response.json()


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.unit
class TestUsersAPI:
    """Tests for /api/users endpoints"""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_signup_returns_camel_case(self, client):
        body = await signup(client, "dave", "Dave Davis")

        assert set(body) >= {"token", "userId", "username", "fullName", "sessionId"}
        assert "password" not in body
        assert "hashedPassword" not in body

    async def test_signup_conflict(self, client):
        await signup(client, "dave", "Dave Davis")

        response = await client.post("/api/users/signup", json={
            "username": "DAVE", "password": "long-enough-password", "fullName": "Other"
        })

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictException"

    async def test_signup_short_password(self, client):
        response = await client.post("/api/users/signup", json={
            "username": "dave", "password": "short", "fullName": "Dave"
        })

        assert response.status_code == 400

    async def test_login_and_validate(self, client):
        await signup(client, "dave", "Dave Davis")

        login = await client.post("/api/users/login", json={"username": "dave", "password": "long-enough-password"})
        token = login.json()["token"]
        validation = await client.post("/api/users/validate-token", json={"token": token})

        assert login.status_code == 200
        assert validation.json()["valid"] is True
        assert validation.json()["user"]["username"] == "dave"

    async def test_login_wrong_password(self, client):
        await signup(client, "dave", "Dave Davis")

        response = await client.post("/api/users/login", json={"username": "dave", "password": "nope-nope-nope"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid username or password"

    async def test_logout_invalidates_token(self, client):
        body = await signup(client, "dave", "Dave Davis")

        first = await client.post("/api/users/logout", json={"token": body["token"]})
        second = await client.post("/api/users/logout", json={"token": body["token"]})
        me = await client.get("/api/users/me", headers=auth(body["token"]))

        assert first.json() == {"success": True}
        assert second.status_code == 200
        assert me.status_code == 401

    async def test_me_requires_token(self, client):
        response = await client.get("/api/users/me")

        assert response.status_code == 401

    async def test_update_me(self, client):
        body = await signup(client, "dave", "Dave Davis")

        response = await client.patch("/api/users/me", headers=auth(body["token"]), json={"fullName": "David"})

        assert response.status_code == 200
        assert response.json()["fullName"] == "David"

    async def test_get_user_by_username(self, client):
        dave = await signup(client, "dave", "Dave Davis")
        erin = await signup(client, "erin", "Erin Evans")

        by_name = await client.get("/api/users/username/ERIN", headers=auth(dave["token"]))
        by_id = await client.get(f"/api/users/{erin['userId']}", headers=auth(dave["token"]))
        missing = await client.get("/api/users/99999", headers=auth(dave["token"]))

        assert by_name.json()["userId"] == erin["userId"]
        assert by_id.json()["username"] == "erin"
        assert missing.status_code == 404

    async def test_session_store_down_is_503(self, client, redis_client):
        broken = AsyncMock()
        broken.setex.side_effect = RedisConnectionError("down")
        fastapi_app.dependency_overrides[get_redis] = lambda: broken

        response = await client.post("/api/users/signup", json={
            "username": "dave", "password": "long-enough-password", "fullName": "Dave"
        })

        assert response.status_code == 503
        assert response.json()["details"]["retryable"] is True


@pytest.mark.unit
class TestFriendsAPI:
    """Tests for /api/friends endpoints"""

    async def test_request_lifecycle(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")

        sent = await client.post("/api/friends/requests", headers=auth(alice["token"]),
                                 json={"receiver_id": bob["userId"]})
        request_id = sent.json()["request_id"]
        duplicate = await client.post("/api/friends/requests", headers=auth(bob["token"]),
                                      json={"receiver_id": alice["userId"]})
        pending = await client.get("/api/friends/requests", headers=auth(bob["token"]))
        by_sender = await client.post(f"/api/friends/requests/{request_id}/respond",
                                      headers=auth(alice["token"]), json={"approve": True})
        accepted = await client.post(f"/api/friends/requests/{request_id}/respond",
                                     headers=auth(bob["token"]), json={"approve": True})
        again = await client.post(f"/api/friends/requests/{request_id}/respond",
                                  headers=auth(bob["token"]), json={"approve": False})
        friends = await client.get("/api/friends", headers=auth(alice["token"]))
        status = await client.get(f"/api/friends/status/{bob['userId']}", headers=auth(alice["token"]))

        assert sent.status_code == 201
        assert sent.json()["state"] == "pending"
        assert duplicate.status_code == 409
        assert pending.json()["incoming"][0]["user"]["username"] == "alice"
        assert by_sender.status_code == 403
        assert accepted.json()["state"] == "accepted"
        assert again.status_code == 409
        assert [f["username"] for f in friends.json()] == ["bob"]
        assert status.json()["status"] == "friends"

    async def test_remove_friend(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")
        sent = await client.post("/api/friends/requests", headers=auth(alice["token"]),
                                 json={"receiver_id": bob["userId"]})
        await client.post(f"/api/friends/requests/{sent.json()['request_id']}/respond",
                          headers=auth(bob["token"]), json={"approve": True})

        removed = await client.delete(f"/api/friends/{alice['userId']}", headers=auth(bob["token"]))
        removed_again = await client.delete(f"/api/friends/{alice['userId']}", headers=auth(bob["token"]))
        friends = await client.get("/api/friends", headers=auth(alice["token"]))

        assert removed.status_code == 204
        assert removed_again.status_code == 204
        assert friends.json() == []

    async def test_search(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        await signup(client, "bob", "Bob Brown")

        response = await client.get("/api/friends/search", params={"q": "bro"}, headers=auth(alice["token"]))

        results = response.json()["users"]
        assert [r["user"]["username"] for r in results] == ["bob"]
        assert results[0]["friendship_status"] == "none"

    async def test_user_directory(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        await signup(client, "bob", "Bob Brown")
        await signup(client, "carol", "Carol Clark")

        response = await client.get("/api/friends/users", headers=auth(alice["token"]))

        assert response.status_code == 200
        users = response.json()["users"]
        assert {u["user"]["username"] for u in users} == {"bob", "carol"}
        assert all(u["friendship_status"] == "none" for u in users)

    async def test_request_to_self(self, client):
        alice = await signup(client, "alice", "Alice Anderson")

        response = await client.post("/api/friends/requests", headers=auth(alice["token"]),
                                     json={"receiver_id": alice["userId"]})

        assert response.status_code == 409


@pytest.mark.unit
class TestChatAPI:
    """Tests for /api/chat endpoints"""

    async def test_end_to_end_conversation(self, client):
        """Signup, befriend, chat, read: the whole flow over HTTP"""
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")

        opened = await client.post("/api/chat/conversations", headers=auth(alice["token"]),
                                   json={"user_id": bob["userId"]})
        reopened = await client.post("/api/chat/conversations", headers=auth(bob["token"]),
                                     json={"user_id": alice["userId"]})
        conversation_id = opened.json()["conversation_id"]

        png = b"\x89PNG\r\n\x1a\n"
        first = await client.post(
            f"/api/chat/conversations/{conversation_id}/messages",
            headers=auth(alice["token"]),
            json={"text": "hi bob"}
        )
        second = await client.post(
            f"/api/chat/conversations/{conversation_id}/messages",
            headers=auth(alice["token"]),
            json={"attachments": [{
                "data": "data:image/png;base64," + base64.b64encode(png).decode(),
                "name": "pic.png",
                "type": "image/png",
                "size": len(png),
            }]}
        )
        history = await client.get(f"/api/chat/conversations/{conversation_id}/messages",
                                   headers=auth(bob["token"]))
        listing = await client.get("/api/chat/conversations", headers=auth(bob["token"]))
        read_one = await client.post(f"/api/chat/messages/{first.json()['id']}/read", headers=auth(bob["token"]))
        read_all = await client.post(f"/api/chat/conversations/{conversation_id}/read", headers=auth(bob["token"]))

        assert opened.status_code == 200
        assert reopened.json()["conversation_id"] == conversation_id
        assert opened.json()["other_user"]["username"] == "bob"
        assert first.status_code == 201
        assert second.json()["attachments"][0]["name"] == "pic.png"
        assert [m["text"] for m in history.json()["messages"]] == ["hi bob", None]
        assert listing.json()["conversations"][0]["unread_count"] == 2
        assert listing.json()["conversations"][0]["other_user"]["username"] == "alice"
        assert read_one.json()["is_read"] is True
        assert read_all.json() == {"updated": 1}

    async def test_befriend_then_chat_delivers_to_subscriber(self, client, broker):
        """Signup, befriend, open a conversation and receive "hi" on the other side"""
        # Arrange
        u1 = await signup(client, "alice", "Alice Anderson")
        u2 = await signup(client, "bob", "Bob Brown")

        # Act: friendship
        sent = await client.post("/api/friends/requests", headers=auth(u1["token"]),
                                 json={"receiver_id": u2["userId"]})
        seen_by_u1 = await client.get(f"/api/friends/status/{u2['userId']}", headers=auth(u1["token"]))
        seen_by_u2 = await client.get(f"/api/friends/status/{u1['userId']}", headers=auth(u2["token"]))
        await client.post(f"/api/friends/requests/{sent.json()['request_id']}/respond",
                          headers=auth(u2["token"]), json={"approve": True})
        friends_u1 = await client.get(f"/api/friends/status/{u2['userId']}", headers=auth(u1["token"]))
        friends_u2 = await client.get(f"/api/friends/status/{u1['userId']}", headers=auth(u2["token"]))

        # Act: chat
        opened = await client.post("/api/chat/conversations", headers=auth(u1["token"]),
                                   json={"user_id": u2["userId"]})
        conversation_id = opened.json()["conversation_id"]
        subscription = broker.subscribe(conversation_id)
        with patch("services.conversation_service.conversation_broker", broker):
            await client.post(f"/api/chat/conversations/{conversation_id}/messages",
                              headers=auth(u1["token"]), json={"text": "hi"})
        delivered = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        # Assert
        assert seen_by_u1.json()["status"] == "sent"
        assert seen_by_u2.json()["status"] == "received"
        assert friends_u1.json()["status"] == "friends"
        assert friends_u2.json()["status"] == "friends"
        assert delivered["text"] == "hi"
        assert delivered["sender_id"] == u1["userId"]
        assert delivered["conversation_id"] == conversation_id

    async def test_outsider_cannot_read_history(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")
        carol = await signup(client, "carol", "Carol Clark")
        opened = await client.post("/api/chat/conversations", headers=auth(alice["token"]),
                                   json={"user_id": bob["userId"]})

        response = await client.get(f"/api/chat/conversations/{opened.json()['conversation_id']}/messages",
                                    headers=auth(carol["token"]))

        assert response.status_code == 403

    async def test_bad_attachment_is_422(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")
        opened = await client.post("/api/chat/conversations", headers=auth(alice["token"]),
                                   json={"user_id": bob["userId"]})

        response = await client.post(
            f"/api/chat/conversations/{opened.json()['conversation_id']}/messages",
            headers=auth(alice["token"]),
            json={"attachments": [{"data": "AAAA", "name": "x.exe", "type": "application/x-msdownload", "size": 3}]}
        )

        assert response.status_code == 422
        assert response.json()["message"] == "File type not supported"

    async def test_empty_message_is_400(self, client):
        alice = await signup(client, "alice", "Alice Anderson")
        bob = await signup(client, "bob", "Bob Brown")
        opened = await client.post("/api/chat/conversations", headers=auth(alice["token"]),
                                   json={"user_id": bob["userId"]})

        response = await client.post(
            f"/api/chat/conversations/{opened.json()['conversation_id']}/messages",
            headers=auth(alice["token"]),
            json={"text": "   "}
        )

        assert response.status_code == 400
