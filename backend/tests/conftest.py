import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

# Settings are read at import time; configure the test environment first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["PERMISSION_CACHE_REDIS_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.application.services.permission_service import PermissionStore
from app.domain import models  # noqa: F401
from app.infrastructure.db.base import Base

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")


class FrozenClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def db_engine():
    if TEST_DATABASE_URL:
        engine = create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            await engine.dispose()
            pytest.skip(f"Database unavailable for integration tests: {exc}")
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def permission_store() -> PermissionStore:
    return PermissionStore(ttl_seconds=30, redis_client=None)


class BrokenSession:
    """Session double whose every database round-trip fails."""

    def add(self, instance) -> None:
        pass

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("connection refused"))

    async def rollback(self) -> None:
        pass


@pytest.fixture
def broken_session() -> BrokenSession:
    return BrokenSession()
