"""
Test infrastructure for the postboard data-access layer.

Strategy
--------
- SQLite in-memory via aiosqlite removes the need for a running Postgres
  instance in CI.
- StaticPool forces every session to share the same in-memory database
  connection; SQLite in-memory databases are connection-scoped.
- The app's get_store dependency is overridden so HTTP tests hit the same
  store handle the service tests use.
- All tables are created fresh before each test and dropped after.
- The Redis cache is disabled by default (cache._redis = None), so service
  calls always read through to the database.  Tests that exercise the
  freshness policy opt in to ``fake_redis``, an in-memory stand-in for the
  handful of Redis commands the cache uses, together with a manual ``clock``.
"""
from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import LockNotOwnedError
from sqlalchemy.pool import StaticPool

from postboard.cache import cache
from postboard.database import Database
from postboard.dependencies import get_store
from postboard.main import app

# ---------------------------------------------------------------------------
# Test store: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

store_test = Database(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

app.dependency_overrides[get_store] = lambda: store_test


# ---------------------------------------------------------------------------
# Redis and clock doubles
# ---------------------------------------------------------------------------

class FakeRedis:
    """In-memory subset of ``redis.asyncio.Redis`` (decode_responses=True)."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def srem(self, key: str, *members: str) -> int:
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    def lock(self, name: str, timeout: float | None = None, blocking: bool = True,
             thread_local: bool = True) -> FakeLock:
        return FakeLock(self, name)

    async def aclose(self) -> None:
        pass


class FakeLock:
    """Token-owned lock with the release semantics of ``redis.asyncio.lock.Lock``."""

    def __init__(self, redis: FakeRedis, name: str) -> None:
        self.redis = redis
        self.name = name
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.name, self.token, nx=True))

    async def release(self) -> None:
        if self.redis.values.get(self.name) != self.token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.redis.values[self.name]


class ManualClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    cache.reset_stats()
    await store_test.create_all()
    yield
    await cache.wait_for_refreshes()
    cache._redis = None
    await store_test.drop_all()


@pytest.fixture
def store() -> Database:
    return store_test


@pytest.fixture
def clock(monkeypatch) -> ManualClock:
    manual = ManualClock()
    monkeypatch.setattr(cache, "_clock", manual)
    return manual


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    """Enable the cache with an in-memory Redis and a manual clock."""
    fake = FakeRedis()
    cache._redis = fake
    return fake


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
