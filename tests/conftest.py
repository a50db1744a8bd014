"""Pytest configuration and fixtures for contactclass tests.

Provides an in-memory database, repositories and the bundled rules engine.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from contactclass.activity import ActivityLog
from contactclass.cache import SqlCacheStore
from contactclass.classification.rules_engine import RulesEngine
from contactclass.config import reset_config
from contactclass.db.models import Base
from contactclass.db.repository import JobRepository


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for name in ("OPENAI_API_KEY", "BING_SEARCH_API_KEY", "GOOGLE_MAPS_API_KEY", "CACHE_BACKEND"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest_asyncio.fixture()
async def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def repository(session_factory) -> JobRepository:
    return JobRepository(session_factory, claim_timeout_seconds=600)


@pytest.fixture
def activity(session_factory) -> ActivityLog:
    return ActivityLog(session_factory)


@pytest.fixture
def sql_cache(session_factory) -> SqlCacheStore:
    return SqlCacheStore(session_factory)


@pytest.fixture
def rules_engine() -> RulesEngine:
    """Engine on the bundled keywords with default thresholds."""
    return RulesEngine(accept_threshold=80, margin_threshold=15, review_below=90)
