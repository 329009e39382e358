"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from gamify.config import Settings, get_settings
from gamify.database import get_session as _get_session
from gamify.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield get_redis_or_none()


def get_settings_dep() -> Settings:
    """Settings as a FastAPI dependency so tests can override reward amounts."""
    return get_settings()
