"""Composition root: builds the domain services and exposes the caller-facing operations.

Everything is constructed from an injected session factory, clock and
settings, so tests can run the whole pipeline against a throwaway
database and a fixed time.
"""

from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock, SystemClock
from questboard.config import Settings, get_settings
from questboard.errors import QuestboardError
from questboard.events.service import EventStore
from questboard.leaderboard.scheduler import Scheduler
from questboard.leaderboard.service import LeaderboardService
from questboard.quests.service import QuestTracker
from questboard.referrals.service import ReferralService
from questboard.xp.service import EventResult, XPService

logger = structlog.get_logger()


class GamificationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.settings = settings

        self.events = EventStore(session_factory, clock)
        self.xp = XPService(session_factory, clock, settings, self.events)
        self.quests = QuestTracker(session_factory, clock, settings, self.xp)
        self.referrals = ReferralService(session_factory, clock, settings, self.xp)
        self.leaderboard = LeaderboardService(session_factory, clock, settings)

        # Processed events feed quest progress and referral verification
        self.xp.add_listener(self.quests.record_event)
        self.xp.add_listener(self.referrals.on_event)

        self.scheduler = Scheduler(
            clock,
            max_workers=settings.scheduler_max_workers,
            tick_seconds=settings.scheduler_tick_seconds,
        )
        self.scheduler.add_job(
            "leaderboard:all-time", settings.alltime_interval_seconds, partial(self.leaderboard.generate, "all-time")
        )
        self.scheduler.add_job(
            "leaderboard:weekly", settings.weekly_interval_seconds, partial(self.leaderboard.generate, "weekly")
        )
        self.scheduler.add_job(
            "leaderboard:daily", settings.daily_interval_seconds, partial(self.leaderboard.generate, "daily")
        )

    async def seed_defaults(self) -> None:
        """Insert the default XP rules and quests if missing."""
        await self.xp.seed_default_rules()
        await self.quests.seed_default_quests()

    # ------------------------------------------------------------------
    # Events and XP
    # ------------------------------------------------------------------

    async def submit_event(
        self,
        user_id: int,
        event_type: str,
        metadata: dict[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> EventResult:
        return await self.xp.process_event(user_id, event_type, metadata, dedup_key)

    async def get_user_xp_summary(self, user_id: int) -> dict[str, Any]:
        return await self.xp.get_summary(user_id)

    async def get_user_ledger(
        self,
        user_id: int,
        reason: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[Any], int]:
        return await self.xp.get_ledger(user_id, reason=reason, start=start, end=end, limit=limit, skip=skip)

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    async def get_quests_with_progress(self, user_id: int, cadence: str | None = None) -> list[dict[str, Any]]:
        return await self.quests.get_quests_with_progress(user_id, cadence)

    async def claim_quest_reward(self, user_id: int, quest_id: int) -> dict[str, Any]:
        """Claim outcome as ``{success, xp_awarded, message}``; business failures are not raised."""
        try:
            result = await self.quests.claim(user_id, quest_id)
        except QuestboardError as exc:
            if exc.status_code >= 500:
                raise
            logger.info("quest_claim_refused", user_id=user_id, quest_id=quest_id, error_code=exc.error_code)
            return _failure(exc)
        return {
            "success": True,
            "quest_id": quest_id,
            "xp_awarded": result.xp_awarded,
            "message": result.message,
        }

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------

    async def track_referral(
        self,
        code: str,
        invitee_user_id: int,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Track outcome as ``{success, referral, message}``; business failures are not raised."""
        try:
            referral = await self.referrals.track(code, invitee_user_id, metadata)
        except QuestboardError as exc:
            if exc.status_code >= 500:
                raise
            logger.info("referral_track_refused", invitee_user_id=invitee_user_id, error_code=exc.error_code)
            return _failure(exc)
        return {"success": True, "referral": referral, "message": "Referral tracked successfully"}

    async def verify_referral_code(self, code: str) -> dict[str, Any]:
        return await self.referrals.verify_code(code)

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    async def get_leaderboard(self, period: str = "all-time", limit: int | None = None, skip: int = 0) -> dict[str, Any]:
        return await self.leaderboard.get_leaderboard(period, limit=limit, skip=skip)

    async def get_user_rank(self, user_id: int, period: str = "all-time") -> dict[str, Any]:
        return await self.leaderboard.get_user_rank(user_id, period)

    async def generate_leaderboard(self, period: str) -> Any:  # noqa: ANN401
        return await self.leaderboard.generate(period)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_scheduler(self) -> None:
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    async def stop_scheduler(self) -> None:
        await self.scheduler.stop()


def _failure(exc: QuestboardError) -> dict[str, Any]:
    return {
        "success": False,
        "message": exc.message,
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "details": exc.details,
    }


def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock | None = None,
    settings: Settings | None = None,
) -> GamificationEngine:
    """Build an engine with the system clock and cached settings unless overridden."""
    return GamificationEngine(session_factory, clock or SystemClock(), settings or get_settings())
