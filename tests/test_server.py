"""
API tests for the Panchayat Community Portal server.

Uses httpx AsyncClient + ASGITransport against the app with a mongomock
database and a stub assistant (see conftest.py).
"""

import asyncio
import uuid

import pytest

from panchayat import server
from panchayat.config import now_utc

pytestmark = pytest.mark.asyncio


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class TestHealthCheck:
    async def test_health_endpoint(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    async def test_security_headers(self, client):
        resp = await client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"


# ═══════════════════════════════════════════════════════════════════════════════
# AUTHENTICATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestAuth:
    async def test_register_creates_viewer(self, client):
        unique = uuid.uuid4().hex[:8]
        resp = await client.post("/api/users/register", json={
            "name": "Ramesh", "email": f"Ramesh_{unique}@Example.com",
            "password": "testpass123", "language": "hi", "role": "admin",
        })
        assert resp.status_code == 201
        data = resp.json()
        assert "access_token" in data
        assert data["user"]["role"] == "viewer"
        assert data["user"]["email"] == f"ramesh_{unique}@example.com"
        assert data["user"]["language"] == "hi"

    async def test_register_duplicate_email(self, client, register):
        _, user = await register()
        resp = await client.post("/api/users/register", json={
            "name": "Duplicate", "email": user["email"], "password": "testpass123"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "User already exists"

    async def test_register_short_password(self, client):
        resp = await client.post("/api/users/register", json={
            "name": "Short", "email": "short@example.com", "password": "123"})
        assert resp.status_code == 422

    async def test_login(self, client, register):
        _, user = await register(password="letmein99")
        resp = await client.post("/api/users/login", json={
            "email": user["email"], "password": "letmein99"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == user["id"]

    async def test_login_ignores_client_role(self, client, register):
        _, user = await register(password="letmein99")
        resp = await client.post("/api/users/login", json={
            "email": user["email"], "password": "letmein99", "role": "admin"})
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "viewer"

    async def test_login_invalid_credentials(self, client, register):
        _, user = await register()
        resp = await client.post("/api/users/login", json={
            "email": user["email"], "password": "wrongpass"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid credentials"

    async def test_login_nonexistent_user(self, client):
        resp = await client.post("/api/users/login", json={
            "email": "nobody@example.com", "password": "whatever"})
        assert resp.status_code == 401

    async def test_get_me(self, client, register):
        headers, user = await register(name="Meena")
        resp = await client.get("/api/users/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["name"] == "Meena"

    async def test_get_me_no_auth(self, client):
        resp = await client.get("/api/users/me")
        assert resp.status_code == 401

    async def test_get_me_invalid_token(self, client):
        resp = await client.get("/api/users/me", headers={"Authorization": "Bearer invalid.token.here"})
        assert resp.status_code == 401

    async def test_update_profile(self, client, register):
        headers, _ = await register()
        resp = await client.put("/api/users/profile", headers=headers,
                                json={"name": "Renamed", "language": "hi"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["language"] == "hi"

    async def test_logout_and_token_revocation(self, client, register):
        headers, _ = await register()
        resp = await client.post("/api/users/logout", headers=headers)
        assert resp.status_code == 200
        resp = await client.get("/api/users/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has been revoked"

    async def test_revocation_survives_blacklist_pruning(self, client, register):
        revoked_headers, _ = await register()
        await client.post("/api/users/logout", headers=revoked_headers)
        server._token_blacklist["expired-token"] = now_utc().timestamp() - 60

        other_headers, _ = await register()
        await client.post("/api/users/logout", headers=other_headers)

        assert "expired-token" not in server._token_blacklist
        resp = await client.get("/api/users/me", headers=revoked_headers)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has been revoked"


# ═══════════════════════════════════════════════════════════════════════════════
# CHAT
# ═══════════════════════════════════════════════════════════════════════════════

class TestChat:
    async def test_create_chat_defaults(self, client, register):
        headers, _ = await register(language="hi")
        resp = await client.post("/api/chat", headers=headers, json={"category": "health"})
        assert resp.status_code == 201
        chat = resp.json()
        assert chat["title"] == "New Conversation"
        assert chat["category"] == "health"
        assert chat["language"] == "hi"
        assert chat["messages"] == []

    async def test_create_chat_invalid_category(self, client, register):
        headers, _ = await register()
        resp = await client.post("/api/chat", headers=headers,
                                 json={"title": "x", "category": "astrology"})
        assert resp.status_code == 422

    async def test_send_message_returns_exchange(self, client, register, assistant):
        headers, _ = await register()
        chat = (await client.post("/api/chat", headers=headers, json={
            "title": "Crops", "category": "agriculture", "language": "en"})).json()

        resp = await client.post(f"/api/chat/{chat['id']}/message", headers=headers,
                                 json={"content": "When should I sow wheat?"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_message"]["role"] == "user"
        assert data["user_message"]["content"] == "When should I sow wheat?"
        assert data["assistant_message"]["role"] == "assistant"
        assert data["assistant_message"]["content"] == "Reply to: When should I sow wheat?"

        call = assistant.calls[-1]
        assert call["history"] == ["When should I sow wheat?"]
        assert call["language"] == "en"
        assert call["category"] == "agriculture"

        full = (await client.get(f"/api/chat/{chat['id']}", headers=headers)).json()
        assert [m["role"] for m in full["messages"]] == ["user", "assistant"]

    async def test_history_is_passed_in_order(self, client, register, assistant):
        headers, _ = await register()
        chat = (await client.post("/api/chat", headers=headers, json={"title": "Talk"})).json()
        for text in ["first", "second"]:
            resp = await client.post(f"/api/chat/{chat['id']}/message", headers=headers,
                                     json={"content": text})
            assert resp.status_code == 200
        assert assistant.calls[-1]["history"] == ["first", "Reply to: first", "second"]

    async def test_blank_message_rejected(self, client, register):
        headers, _ = await register()
        chat = (await client.post("/api/chat", headers=headers, json={"title": "Talk"})).json()
        resp = await client.post(f"/api/chat/{chat['id']}/message", headers=headers,
                                 json={"content": "   "})
        assert resp.status_code == 422

    async def test_list_most_recently_updated_first(self, client, register):
        headers, _ = await register()
        first = (await client.post("/api/chat", headers=headers, json={"title": "First"})).json()
        await asyncio.sleep(0.01)
        second = (await client.post("/api/chat", headers=headers, json={"title": "Second"})).json()

        listed = (await client.get("/api/chat", headers=headers)).json()
        assert [c["id"] for c in listed] == [second["id"], first["id"]]
        assert "messages" not in listed[0]

        await asyncio.sleep(0.01)
        await client.post(f"/api/chat/{first['id']}/message", headers=headers, json={"content": "hi"})
        listed = (await client.get("/api/chat", headers=headers)).json()
        assert [c["id"] for c in listed] == [first["id"], second["id"]]

    async def test_unknown_chat_404(self, client, register):
        headers, _ = await register()
        resp = await client.get("/api/chat/does-not-exist", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Chat not found"

    async def test_send_releases_chat_lock(self, client, register):
        headers, _ = await register()
        chat = (await client.post("/api/chat", headers=headers, json={"title": "Talk"})).json()
        resp = await client.post(f"/api/chat/{chat['id']}/message", headers=headers,
                                 json={"content": "hello"})
        assert resp.status_code == 200
        assert len(server._chat_locks) == 0

    async def test_send_to_unknown_chat_takes_no_lock(self, client, register):
        headers, _ = await register()
        resp = await client.post("/api/chat/does-not-exist/message", headers=headers,
                                 json={"content": "hello"})
        assert resp.status_code == 404
        assert len(server._chat_locks) == 0

    async def test_other_users_chat_403(self, client, register):
        owner, _ = await register()
        intruder, _ = await register()
        chat = (await client.post("/api/chat", headers=owner, json={"title": "Private"})).json()

        resp = await client.get(f"/api/chat/{chat['id']}", headers=intruder)
        assert resp.status_code == 403
        resp = await client.post(f"/api/chat/{chat['id']}/message", headers=intruder,
                                 json={"content": "hello"})
        assert resp.status_code == 403
        resp = await client.delete(f"/api/chat/{chat['id']}", headers=intruder)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Not authorized to delete this chat"

    async def test_delete_chat(self, client, register):
        headers, _ = await register()
        chat = (await client.post("/api/chat", headers=headers, json={"title": "Temp"})).json()
        resp = await client.delete(f"/api/chat/{chat['id']}", headers=headers)
        assert resp.status_code == 200
        resp = await client.get(f"/api/chat/{chat['id']}", headers=headers)
        assert resp.status_code == 404

    async def test_chat_requires_auth(self, client):
        resp = await client.get("/api/chat")
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC MIRROR
# ═══════════════════════════════════════════════════════════════════════════════

class TestSyncMirror:
    async def test_empty_mirror(self, client, register):
        headers, _ = await register()
        resp = await client.get("/api/sync/notices", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_put_replaces_collection(self, client, register):
        headers, _ = await register()
        notice = {"title": "Water supply cut", "content": "No water on Monday",
                  "category": "public", "priority": "high"}
        resp = await client.put("/api/sync/notices", headers=headers, json=[notice, notice])
        assert resp.status_code == 200
        assert resp.json() == {"count": 2}

        resp = await client.put("/api/sync/notices", headers=headers, json=[notice])
        assert resp.json() == {"count": 1}
        pulled = (await client.get("/api/sync/notices", headers=headers)).json()
        assert len(pulled) == 1
        assert pulled[0]["title"] == "Water supply cut"

    async def test_feedback_requires_content(self, client, register):
        headers, user = await register()
        resp = await client.put("/api/sync/feedback", headers=headers,
                                json=[{"user_id": user["id"], "transcript": "  "}])
        assert resp.status_code == 422

    async def test_mirror_requires_auth(self, client):
        resp = await client.get("/api/sync/feedback")
        assert resp.status_code == 401
