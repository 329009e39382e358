"""Redis client for reward event publishing.

Redis is optional: with an empty ``redis_url`` no client is created, events
are not published, and readiness reports Redis as ``disabled``.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from gamify.config import Settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def init_redis(settings: Settings) -> None:
    """Create the publishing client, or leave it unset when Redis is off."""
    global _client  # noqa: PLW0603
    if not settings.redis_url:
        logger.info("Redis URL not set; reward events will not be published")
        _client = None
        return
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis_or_none() -> redis.Redis | None:
    """The publishing client, or None when event publishing is not configured."""
    return _client


async def redis_status() -> str:
    """``ok``, ``disabled`` or ``error: ...`` for the readiness check."""
    if _client is None:
        return "disabled"
    try:
        await _client.ping()
    except (RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"
