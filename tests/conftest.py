"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import secrets
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

ADMIN_WALLET = "0x00000000000000000000000000000000000000ad"

# Must be set before questboard.config is first read
os.environ["QB_JWT_SECRET"] = "test-secret-do-not-use"
os.environ["QB_ADMIN_WALLET_ADDRESSES"] = json.dumps([ADMIN_WALLET])
os.environ["QB_SCHEDULER_ENABLED"] = "false"
os.environ["QB_LOG_FORMAT"] = "console"

from questboard.auth.jwt import create_access_token  # noqa: E402
from questboard.config import Settings, get_settings  # noqa: E402
from questboard.db import models  # noqa: E402, F401
from questboard.db.base import Base  # noqa: E402
from questboard.db.models import User  # noqa: E402
from questboard.engine import GamificationEngine, build_engine  # noqa: E402
from questboard.users.service import get_or_create_user  # noqa: E402

get_settings.cache_clear()

# A Wednesday; the local week started Sunday 2026-10-11
START = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        timezone="UTC",
        scheduler_enabled=False,
        jwt_secret="test-secret-do-not-use",
        admin_wallet_addresses=[ADMIN_WALLET],
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so concurrent sessions really contend for the database lock."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'questboard.db'}",
        connect_args={"timeout": 30},
        pool_timeout=60,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def engine(session_factory, clock, settings) -> GamificationEngine:
    """Engine over a fresh database with the default rules and quests seeded."""
    eng = build_engine(session_factory, clock=clock, settings=settings)
    await eng.seed_defaults()
    return eng


@pytest.fixture
def make_user(session_factory):
    """Factory creating users by wallet address (random if omitted)."""

    async def _make(wallet_address: str | None = None) -> User:
        async with session_factory() as db:
            user, _ = await get_or_create_user(
                db,
                wallet_address or f"0x{secrets.token_hex(20)}",
                admin_addresses=[ADMIN_WALLET],
            )
            await db.commit()
        return user

    return _make


def auth_headers(wallet_address: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(wallet_address)}"}


@pytest_asyncio.fixture
async def client(engine: GamificationEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test engine (lifespan is not run)."""
    from questboard.main import create_app

    app = create_app()
    app.state.engine = engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers() -> dict[str, str]:
    return auth_headers("0x1111111111111111111111111111111111111111")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN_WALLET)


@pytest.fixture
def headers_for():
    """Build bearer headers for any wallet address."""
    return auth_headers
