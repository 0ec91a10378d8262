"""Shared FastAPI dependencies."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.engine import GamificationEngine


def get_engine(request: Request) -> GamificationEngine:
    """The engine built at startup and stored on the application state."""
    return request.app.state.engine


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session from the engine's session factory."""
    async with request.app.state.engine.session_factory() as session:
        yield session
