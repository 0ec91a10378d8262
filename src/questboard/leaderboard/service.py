"""Leaderboard snapshot generation and reads.

A snapshot is an immutable ranked view of the XP ledger over one period
window. Generation first commits a ``generating`` row, then computes and
inserts the ranked rows and flips the snapshot to ``completed`` in a single
transaction. Readers only ever see ``completed`` snapshots, so a run that
fails or times out half way is invisible to them.
"""

from __future__ import annotations

import asyncio
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock
from questboard.config import Settings
from questboard.db.models import LeaderboardRow, LeaderboardSnapshot, User, XPLedger
from questboard.errors import NotFoundError, SnapshotTimeoutError, ValidationError
from questboard.leaderboard.ranking import LEADERBOARD_PERIODS, rank_scores, snapshot_stats
from questboard.periods import Window, window_for

logger = structlog.get_logger()


def validate_period(period: str) -> str:
    if period not in LEADERBOARD_PERIODS:
        raise ValidationError(f"Invalid period: {period}", {"allowed": list(LEADERBOARD_PERIODS)})
    return period


class LeaderboardService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self.timeout_seconds = settings.snapshot_timeout_seconds
        self.default_limit = settings.leaderboard_default_limit
        self.max_limit = settings.leaderboard_max_limit

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, period: str) -> LeaderboardSnapshot:
        """Build a new snapshot for ``period``.

        On any failure the snapshot is marked ``failed`` with the error and
        the exception is re-raised; a timeout surfaces as SnapshotTimeoutError.
        """
        validate_period(period)
        now = self._clock.now()
        window = window_for(period, now, self._tz)

        async with self._session_factory() as db, db.begin():
            snapshot = LeaderboardSnapshot(
                period=period,
                window_start=window.start,
                window_end=window.end,
                started_at=now,
                status="generating",
            )
            db.add(snapshot)
            await db.flush()
        snapshot_id = snapshot.id

        try:
            await asyncio.wait_for(self._populate(snapshot_id, period, window), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            await self._mark_failed(snapshot_id, f"Timed out after {self.timeout_seconds:g}s")
            logger.error("leaderboard_snapshot_timeout", snapshot_id=snapshot_id, period=period)
            raise SnapshotTimeoutError(snapshot_id, self.timeout_seconds) from exc
        except Exception as exc:
            await self._mark_failed(snapshot_id, str(exc) or exc.__class__.__name__)
            logger.error("leaderboard_snapshot_failed", snapshot_id=snapshot_id, period=period, error=str(exc))
            raise

        completed = await self.get_snapshot(snapshot_id)
        logger.info(
            "leaderboard_snapshot_completed",
            snapshot_id=snapshot_id,
            period=period,
            total_users=completed.total_users,
            top_score=completed.top_score,
        )
        return completed

    async def aggregate_scores(self, db: AsyncSession, period: str, window: Window) -> list[dict[str, Any]]:
        """Per-user XP sums inside the window, positive sums of active users only."""
        score = func.sum(XPLedger.delta_xp)
        query = (
            select(XPLedger.user_id, User.wallet_address, score.label("score"))
            .join(User, User.id == XPLedger.user_id)
            .where(User.is_active.is_(True))
            .group_by(XPLedger.user_id, User.wallet_address)
            .having(score > 0)
        )
        if period == "all-time":
            query = query.where(XPLedger.created_at <= window.end)
        else:
            query = query.where(XPLedger.created_at >= window.start, XPLedger.created_at <= window.end)

        result = await db.execute(query)
        return [
            {"user_id": row.user_id, "score": int(row.score), "wallet_address": row.wallet_address}
            for row in result
        ]

    async def _populate(self, snapshot_id: int, period: str, window: Window) -> None:
        async with self._session_factory() as db, db.begin():
            ranked = rank_scores(await self.aggregate_scores(db, period, window))
            if ranked:
                await db.execute(
                    insert(LeaderboardRow),
                    [
                        {
                            "snapshot_id": snapshot_id,
                            "user_id": row["user_id"],
                            "rank": row["rank"],
                            "score": row["score"],
                            "row_metadata": {"wallet_address": row["wallet_address"]},
                        }
                        for row in ranked
                    ],
                )
            stats = snapshot_stats(ranked)
            await db.execute(
                update(LeaderboardSnapshot)
                .where(LeaderboardSnapshot.id == snapshot_id)
                .values(status="completed", generated_at=self._clock.now(), **stats)
            )

    async def _mark_failed(self, snapshot_id: int, message: str) -> None:
        async with self._session_factory() as db, db.begin():
            await db.execute(
                update(LeaderboardSnapshot)
                .where(LeaderboardSnapshot.id == snapshot_id)
                .values(status="failed", error_message=message[:512])
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_snapshot(self, snapshot_id: int) -> LeaderboardSnapshot:
        async with self._session_factory() as db:
            snapshot = await db.get(LeaderboardSnapshot, snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", {"snapshot_id": snapshot_id})
        return snapshot

    async def get_latest(self, period: str) -> LeaderboardSnapshot | None:
        """Most recently completed snapshot for ``period``, or None."""
        validate_period(period)
        async with self._session_factory() as db:
            return await db.scalar(
                select(LeaderboardSnapshot)
                .where(LeaderboardSnapshot.period == period, LeaderboardSnapshot.status == "completed")
                .order_by(LeaderboardSnapshot.generated_at.desc(), LeaderboardSnapshot.id.desc())
                .limit(1)
            )

    async def _latest_or_generate(self, period: str, generate_if_missing: bool) -> LeaderboardSnapshot | None:
        snapshot = await self.get_latest(period)
        if snapshot is None and generate_if_missing:
            logger.info("leaderboard_cold_start", period=period)
            await self.generate(period)
            snapshot = await self.get_latest(period)
        return snapshot

    async def get_leaderboard(
        self,
        period: str = "all-time",
        limit: int | None = None,
        skip: int = 0,
        generate_if_missing: bool = True,
    ) -> dict[str, Any]:
        """Page of the latest completed snapshot. Generates one on a cold start."""
        validate_period(period)
        limit = min(max(limit or self.default_limit, 1), self.max_limit)
        skip = max(skip, 0)

        snapshot = await self._latest_or_generate(period, generate_if_missing)
        if snapshot is None:
            return {
                "period": period,
                "snapshot_id": None,
                "generated_at": None,
                "window_start": None,
                "window_end": None,
                "total_users": 0,
                "top_score": 0,
                "average_score": 0.0,
                "rows": [],
            }

        async with self._session_factory() as db:
            result = await db.execute(
                select(LeaderboardRow)
                .where(LeaderboardRow.snapshot_id == snapshot.id)
                .order_by(LeaderboardRow.rank)
                .offset(skip)
                .limit(limit)
            )
            rows = result.scalars().all()

        return {
            "period": period,
            "snapshot_id": snapshot.id,
            "generated_at": snapshot.generated_at,
            "window_start": snapshot.window_start,
            "window_end": snapshot.window_end,
            "total_users": snapshot.total_users,
            "top_score": snapshot.top_score,
            "average_score": snapshot.average_score,
            "rows": [
                {
                    "rank": row.rank,
                    "user_id": row.user_id,
                    "score": row.score,
                    "wallet_address": (row.row_metadata or {}).get("wallet_address"),
                }
                for row in rows
            ],
        }

    async def get_user_rank(
        self,
        user_id: int,
        period: str = "all-time",
        generate_if_missing: bool = True,
    ) -> dict[str, Any]:
        """The user's row in the latest completed snapshot."""
        validate_period(period)
        snapshot = await self._latest_or_generate(period, generate_if_missing)
        if snapshot is None:
            return {
                "found": False,
                "rank": None,
                "score": 0,
                "total_users": 0,
                "period": period,
                "generated_at": None,
            }

        async with self._session_factory() as db:
            row = await db.scalar(
                select(LeaderboardRow).where(
                    LeaderboardRow.snapshot_id == snapshot.id,
                    LeaderboardRow.user_id == user_id,
                )
            )

        return {
            "found": row is not None,
            "rank": row.rank if row else None,
            "score": row.score if row else 0,
            "total_users": snapshot.total_users,
            "period": period,
            "generated_at": snapshot.generated_at,
        }

    async def list_snapshots(self, period: str | None = None, limit: int = 20) -> list[LeaderboardSnapshot]:
        """Recent snapshots of any status, newest first (operator view)."""
        query = select(LeaderboardSnapshot)
        if period is not None:
            query = query.where(LeaderboardSnapshot.period == validate_period(period))
        async with self._session_factory() as db:
            result = await db.execute(
                query.order_by(LeaderboardSnapshot.started_at.desc(), LeaderboardSnapshot.id.desc()).limit(limit)
            )
            return list(result.scalars().all())
