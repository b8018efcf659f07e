"""
Pytest configuration and fixtures.

This file is automatically discovered by pytest and provides
shared fixtures for all test modules.

Database tests run against a throwaway SQLite file (aiosqlite) with the
full schema. Every transaction starts with BEGIN IMMEDIATE, so concurrent
sessions serialize on the write lock the way row locks serialize them on
PostgreSQL.

Tests marked `integration` need a real PostgreSQL (TEST_DATABASE_URL) and
only run with --run-integration.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from goldminer.db.base import Base
from goldminer.db.session import create_session_factory
from goldminer.models import Channel, Video
from goldminer.services.automation.queue import JobQueue


# ================================
# Pytest Configuration
# ================================

def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run tests that need a PostgreSQL database",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs PostgreSQL (TEST_DATABASE_URL)")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="needs --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ================================
# Clock Fixtures
# ================================

class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    """Frozen UTC clock at 2024-01-15 10:00."""
    return FrozenClock(datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc))


# ================================
# Database Fixtures
# ================================

@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a test database engine with all tables.

    NullPool gives every session its own SQLite connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'goldminer.db'}",
        poolclass=NullPool,
        echo=False,  # Set to True for SQL debugging
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return create_session_factory(test_engine)


@pytest.fixture
def queue(session_factory, clock) -> JobQueue:
    """Job queue on the test database with a frozen clock."""
    return JobQueue(session_factory, clock=clock)


# ================================
# Content Fixtures
# ================================

TRANSCRIPT = (
    "0:00\n"
    "Welcome back to the channel. Today we are looking at vector databases.\n"
    "1:30\n"
    "pgvector adds a vector column type and similarity operators to PostgreSQL.\n"
    "3:05\n"
    "An HNSW index keeps nearest neighbour queries fast as the table grows."
)


@pytest.fixture
def transcript_text() -> str:
    """A stored transcript with three timed segments (0:00, 1:30, 3:05)."""
    return TRANSCRIPT


@pytest.fixture
def make_video(session_factory):
    """
    Factory fixture storing a video.

    Usage:
        video_id = await make_video("abc", transcript="0:00\\nHello")
    """
    async def _make_video(youtube_id: str = "abc", transcript: str | None = None, **kwargs) -> int:
        async with session_factory() as session, session.begin():
            video = Video(
                youtube_id=youtube_id,
                title=kwargs.pop("title", f"Video {youtube_id}"),
                channel=kwargs.pop("channel", "Test Channel"),
                transcript=transcript,
                **kwargs,
            )
            session.add(video)
            await session.flush()
            return video.id

    return _make_video


@pytest.fixture
def make_channel(session_factory):
    """Factory fixture storing a followed channel."""
    async def _make_channel(channel_id: str = "UC_test", **kwargs) -> int:
        async with session_factory() as session, session.begin():
            channel = Channel(
                channel_id=channel_id,
                name=kwargs.pop("name", f"Channel {channel_id}"),
                auto_fetch=kwargs.pop("auto_fetch", True),
                **kwargs,
            )
            session.add(channel)
            await session.flush()
            return channel.id

    return _make_channel
