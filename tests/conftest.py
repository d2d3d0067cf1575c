"""Global pytest fixtures for QuestBoard.

This module provides shared fixtures for testing including:
- A SQLite database per test (file backed, so two sessions can race)
- An HTTP client bound to the FastAPI app
- Quest and claim builders
"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from questboard.config import get_settings
from questboard.datetime_utils import utcnow
from questboard.models import Base, Quest
from questboard.services.quest_service import QuestService
from tests.factories import QuestFactory


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Settings are cached; make every test start from defaults."""
    monkeypatch.delenv("QUESTBOARD_ZKEMAIL_BLUEPRINTS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'questboard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ===========================================
# DATA BUILDERS
# ===========================================


@pytest.fixture
def make_quest(db_session):
    """Create a quest through the service; extra kwargs override the payload."""

    async def _make(**overrides: Any) -> Quest:
        return await QuestService(db_session).create_quest(QuestFactory.create(**overrides))

    return _make


@pytest.fixture
def backdate_expiry(db_session):
    """Push a time-based quest's expiry into the past."""

    async def _backdate(quest_id, minutes: int = 5) -> None:
        await db_session.execute(
            update(Quest)
            .where(Quest.id == quest_id)
            .values(expiry=utcnow() - timedelta(minutes=minutes))
        )
        await db_session.commit()

    return _backdate


@pytest.fixture
def escrowed() -> dict[str, Any]:
    """Quest fields for a quest funded through the escrow contract."""
    return {
        "reward_amount": Decimal("100"),
        "supplied_funds": Decimal("100"),
        "transaction_hash": "0x" + "ab" * 32,
    }


# ===========================================
# HTTP CLIENT
# ===========================================


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Client for the app with the database dependency bound to the test DB."""
    from questboard.database import get_db
    from questboard.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
