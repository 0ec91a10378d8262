"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from questboard.config import get_settings
from questboard.database import close_db, get_session_factory, init_db
from questboard.engine import build_engine
from questboard.events.router import router as events_router
from questboard.health.router import router as health_router
from questboard.leaderboard.router import router as leaderboard_router
from questboard.middleware import setup_middleware
from questboard.quests.router import router as quests_router
from questboard.redis_client import close_redis, init_redis
from questboard.referrals.router import router as referrals_router
from questboard.users.router import router as users_router
from questboard.xp.router import router as xp_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        command_timeout=settings.db_command_timeout_seconds,
        pool_timeout=settings.db_pool_timeout_seconds,
    )
    await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)

    engine = build_engine(get_session_factory(), settings=settings)
    app.state.engine = engine

    # Default XP rules and quests (idempotent)
    if settings.seed_defaults:
        try:
            await engine.seed_defaults()
        except Exception:
            logger.warning("Default seeding failed (tables may not exist yet)", exc_info=True)

    engine.start_scheduler()

    yield

    await engine.stop_scheduler()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Questboard API",
        description="Event-sourced XP, quests, referrals and leaderboards for DeFi users",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(events_router)
    app.include_router(xp_router)
    app.include_router(quests_router)
    app.include_router(referrals_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
