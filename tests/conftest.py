"""
Shared pytest fixtures for the Panchayat Community Portal test suite.

The FastAPI app runs in-process through httpx.ASGITransport, backed by a
mongomock database and a stub assistant, so no MongoDB or AI backend is needed.
"""

import asyncio
import os
import uuid

# Must be in place before panchayat.server is imported
os.environ.setdefault("JWT_SECRET", "test-secret-for-the-panchayat-portal-suite-0123456789")

import httpx
import mongomock
import pytest
import pytest_asyncio

from panchayat import server
from panchayat.api_client import PortalApiClient
from panchayat.local_store import LocalStore
from panchayat.server import app, get_assistant, get_db, limiter, prepare_database

BASE_URL = "http://testserver"


class StubAssistant:
    """Stands in for ChatAssistant: records every call and echoes the last message."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = []

    async def reply(self, history, language, category):
        self.calls.append({"history": [m.content for m in history],
                           "language": language, "category": category})
        await asyncio.sleep(self.delay)
        return f"Reply to: {history[-1].content}"


class CountingTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and records every request that goes through it."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.requests = []

    async def handle_async_request(self, request):
        self.requests.append((request.method, request.url.path))
        return await self.inner.handle_async_request(request)


@pytest.fixture
def mongo_db():
    database = mongomock.MongoClient()["panchayat_test"]
    prepare_database(database)
    return database


@pytest.fixture
def assistant():
    return StubAssistant()


@pytest.fixture
def asgi_transport(mongo_db, assistant):
    # Disable rate limiting so repeated registrations aren't throttled
    limiter.enabled = False
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_assistant] = lambda: assistant
    yield httpx.ASGITransport(app=app)
    app.dependency_overrides.clear()
    server._chat_locks.clear()
    server._mirror_locks.clear()


@pytest_asyncio.fixture
async def client(asgi_transport):
    async with httpx.AsyncClient(transport=asgi_transport, base_url=BASE_URL) as c:
        yield c


@pytest.fixture
def register(client):
    """Factory: register a fresh viewer and return (auth headers, user JSON)."""

    async def _register(name: str = "Test Resident", language: str = "en", password: str = "secret123"):
        email = f"resident_{uuid.uuid4().hex[:8]}@example.com"
        resp = await client.post("/api/users/register", json={
            "name": name, "email": email, "password": password, "language": language})
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]

    return _register


@pytest_asyncio.fixture
async def api(asgi_transport):
    """PortalApiClient talking to the in-process app, already logged in as a fresh viewer."""
    counting = CountingTransport(asgi_transport)
    c = PortalApiClient(BASE_URL, transport=counting)
    c.counting = counting
    await c.register("Api Resident", f"api_{uuid.uuid4().hex[:8]}@example.com", "secret123")
    counting.requests.clear()
    yield c
    await c.aclose()


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "offline", capacity=256 * 1024)
