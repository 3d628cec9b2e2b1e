"""
Test fixtures for Rainwatch.

Provides:
- A fixed clock and a clock-driven in-memory key/value store
- Async SQLite in-memory database with all tables
- Repository fixtures over that database
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rainwatch.db.engine import Base
from rainwatch.db.models import Alert, ForecastDaily, Observation, TweetLog  # noqa: F401
from rainwatch.db.repositories import ObservationRepository, TweetLogRepository
from rainwatch.services.clock import FixedClock
from rainwatch.services.store import InMemoryStore

# In-memory SQLite shared by every connection of one engine
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# Monday, 14:30 IST
T0 = datetime(2025, 7, 14, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def store(clock) -> InMemoryStore:
    return InMemoryStore(clock)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database per test, all tables created."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def tweet_log(session_factory) -> TweetLogRepository:
    return TweetLogRepository(session_factory)


@pytest.fixture
def records(session_factory) -> ObservationRepository:
    return ObservationRepository(session_factory)
