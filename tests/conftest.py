"""
Shared pytest fixtures.

Fixture Hierarchy:
    Environment (module import time):
    └── DATABASE_URL → throwaway SQLite file, OTEL disabled

    Function-scoped:
    ├── fake_redis (autouse): in-memory stand-in for redis.asyncio
    ├── database: fresh schema per test
    ├── make_user: inserts a user row, returns its id
    ├── clock: controllable time source for notification dedup
    ├── gateway: realtime graph attached to app.state
    └── client: HTTPX AsyncClient over ASGITransport
"""

import os
import tempfile
from datetime import timedelta
from fnmatch import fnmatchcase
from uuid import uuid4

# Override settings for testing BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="social_api_test_"), "test.db"
)
os.environ["OTEL_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from social_api.clients import redis_client  # noqa: E402
from social_api.database import AsyncSessionLocal, Base, engine  # noqa: E402
from social_api.main import app, attach_realtime  # noqa: E402
from social_api.models import User, utcnow  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeRedis:
    """The subset of redis.asyncio.Redis the app uses, backed by a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.scan_calls: list[str] = []

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match="*", count=None):
        self.scan_calls.append(match)
        for key in list(self.store):
            if fnmatchcase(key, match):
                yield key

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def aclose(self):
        pass


class BrokenRedis:
    """Every call fails, as if the Redis server were unreachable."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ConnectionError("redis is down")
        return fail


class FakeTransport:
    """Records frames the delivery router writes to a connection."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, name=None):
        return [f for f in self.sent if name is None or f["event"] == name]

    def acks(self):
        return {f["ack"]: f["data"] for f in self.sent if f["event"] == "ack"}


class SimClock:
    """Callable clock that tests move forward explicitly."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_client, "_redis", fake)
    return fake


@pytest.fixture
def broken_redis(monkeypatch):
    monkeypatch.setattr(redis_client, "_redis", BrokenRedis())


@pytest_asyncio.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def make_user(database):
    async def _make(username=None, display_name=None):
        async with AsyncSessionLocal() as db:
            user = User(
                username=username or f"user_{uuid4().hex[:8]}",
                display_name=display_name,
            )
            db.add(user)
            await db.commit()
            return user.user_id

    return _make


@pytest.fixture
def clock():
    return SimClock()


@pytest_asyncio.fixture
async def gateway(database, clock):
    gw = attach_realtime(app, clock=clock)
    yield gw
    await gw.router.close()


@pytest_asyncio.fixture
async def client(gateway):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def as_user(user_id):
    return {"X-User-Id": user_id}
