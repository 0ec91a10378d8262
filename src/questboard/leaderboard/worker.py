"""Leaderboard snapshot arq worker, for running generation out of the API process.

Cadences:
- All-time: every hour
- Weekly: every hour
- Daily: every 30 minutes

Import path for arq CLI: arq questboard.leaderboard.worker.LeaderboardWorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from questboard.clock import SystemClock
from questboard.config import get_settings
from questboard.database import close_db, get_session_factory, init_db
from questboard.leaderboard.service import LeaderboardService

logger = logging.getLogger(__name__)


async def _generate(ctx: dict, period: str) -> int:
    service: LeaderboardService = ctx["leaderboard"]
    snapshot = await service.generate(period)
    logger.info("%s leaderboard snapshot %d: %d users", period, snapshot.id, snapshot.total_users)
    return snapshot.id


async def generate_alltime_snapshot(ctx: dict) -> int:
    """Generate the all-time snapshot. Runs every hour."""
    return await _generate(ctx, "all-time")


async def generate_weekly_snapshot(ctx: dict) -> int:
    """Generate the weekly snapshot. Runs every hour."""
    return await _generate(ctx, "weekly")


async def generate_daily_snapshot(ctx: dict) -> int:
    """Generate the daily snapshot. Runs every 30 minutes."""
    return await _generate(ctx, "daily")


async def leaderboard_startup(ctx: dict) -> None:
    """Initialize the DB connection and snapshot service on worker startup."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        command_timeout=settings.db_command_timeout_seconds,
        pool_timeout=settings.db_pool_timeout_seconds,
    )
    ctx["leaderboard"] = LeaderboardService(get_session_factory(), SystemClock(), settings)
    logger.info("Leaderboard worker started")


async def leaderboard_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("Leaderboard worker shut down")


class LeaderboardWorkerSettings:
    """arq worker settings for leaderboard snapshots."""

    functions = [
        generate_alltime_snapshot,
        generate_weekly_snapshot,
        generate_daily_snapshot,
    ]
    cron_jobs = [
        cron(generate_alltime_snapshot, minute={0}, run_at_startup=True),
        cron(generate_weekly_snapshot, minute={0}, run_at_startup=True),
        cron(generate_daily_snapshot, minute={0, 30}, run_at_startup=True),
    ]
    on_startup = leaderboard_startup
    on_shutdown = leaderboard_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 3
    job_timeout = 300  # 5 minutes max per job
