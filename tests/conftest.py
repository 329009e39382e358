"""Shared test fixtures.

Everything runs against an in-memory SQLite database created from the ORM
metadata. PostgreSQL-only tests are marked ``postgres`` and use
``GAMIFY_TEST_DATABASE_URL``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from gamify.config import Settings, get_settings
from gamify.database import get_session
from gamify.db.base import Base
from gamify.db.models import Achievement, Activity, Badge, Level, User
from gamify.dependencies import get_settings_dep
from gamify.main import create_app

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    """Settings with the default reward amounts, isolated from the environment."""
    get_settings.cache_clear()
    return Settings(
        database_url=TEST_DATABASE_URL,
        redis_url="",
        log_format="console",
        _env_file=None,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service calls and assertions."""
    async with session_factory() as session:
        yield session


class CatalogFactory:
    """Creates users and catalog rows with sensible defaults.

    Each row is committed from its own short-lived session, so the session
    under test starts with an empty identity map.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self._user_seq = 0

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
        return obj

    async def user(self, **kwargs) -> User:
        self._user_seq += 1
        kwargs.setdefault("username", f"player{self._user_seq}")
        kwargs.setdefault("email", f"player{self._user_seq}@example.com")
        return await self._save(User(**kwargs))

    async def badge(self, name: str, **kwargs) -> Badge:
        kwargs.setdefault("criteria_type", "custom")
        kwargs.setdefault("experience_reward", 0)
        return await self._save(Badge(name=name, **kwargs))

    async def level(self, level_number: int, experience_required: int, badge: Badge | None = None) -> Level:
        return await self._save(Level(
            level_number=level_number,
            name=f"Level {level_number}",
            experience_required=experience_required,
            badge_reward_id=badge.id if badge else None,
        ))

    async def achievement(self, name: str, badge: Badge | None = None, **kwargs) -> Achievement:
        kwargs.setdefault("criteria_type", "custom")
        kwargs.setdefault("experience_reward", 0)
        return await self._save(Achievement(
            name=name, badge_reward_id=badge.id if badge else None, **kwargs,
        ))

    async def activity(self, name: str, experience_reward: int, badge: Badge | None = None, **kwargs) -> Activity:
        return await self._save(Activity(
            name=name,
            experience_reward=experience_reward,
            badge_reward_id=badge.id if badge else None,
            **kwargs,
        ))


@pytest_asyncio.fixture
async def factory(session_factory: async_sessionmaker[AsyncSession]) -> CatalogFactory:
    return CatalogFactory(session_factory)


@pytest_asyncio.fixture
async def onboarding_badges(factory: CatalogFactory) -> dict[str, Badge]:
    """The two badges the once-per-user triggers hand out by name."""
    return {
        "registration": await factory.badge("First Steps", experience_reward=10),
        "profile": await factory.badge("Profile Master", experience_reward=20, rarity="rare"),
    }


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the in-memory database; Redis publishing is off."""
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_settings_dep] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
