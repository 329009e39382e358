"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gamify.config import get_settings
from gamify.database import close_db, init_db
from gamify.health.router import router as health_router
from gamify.middleware import setup_middleware
from gamify.progression.router import leaderboard_router
from gamify.progression.router import router as progression_router
from gamify.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings)
    await init_redis(settings)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Gamify API",
        description="Progression and rewards engine: XP, levels, badges and achievements",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
