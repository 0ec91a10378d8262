"""Quest progress tracker.

One ``quest_progress`` row per (user, quest, period). Progress moves
not_started -> in_progress -> completed -> claimed. Every write is a
conditional UPDATE so concurrent events and claims cannot push a row
backwards or pay a reward twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock
from questboard.config import Settings
from questboard.db.models import Event, Quest, QuestProgress, User
from questboard.db.upsert import dialect_insert
from questboard.errors import (
    ConflictError,
    NotFoundError,
    QuestAlreadyClaimedError,
    QuestNotCompletedError,
    ValidationError,
)
from questboard.periods import CADENCE_ONE_TIME, Window, period_key, window_for
from questboard.quests.rules import (
    is_currently_active,
    matches_event,
    progress_increment,
    progress_state,
    rule_target,
    validate_cadence,
    validate_rule,
)
from questboard.quests.seed import DEFAULT_QUESTS
from questboard.xp.service import XPService

logger = structlog.get_logger()

_EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "cadence",
        "start_at",
        "end_at",
        "rule",
        "reward_xp",
        "is_active",
        "display_order",
        "quest_metadata",
    }
)
# Only the end of the active window may be cleared
_NULLABLE_FIELDS = frozenset({"end_at"})


@dataclass
class ClaimResult:
    success: bool
    quest_id: int
    xp_awarded: int = 0
    message: str = ""
    progress_id: int | None = None


class QuestTracker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: Settings,
        xp: XPService,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self._xp = xp

    # ------------------------------------------------------------------
    # Periods and rows
    # ------------------------------------------------------------------

    def current_period(self, quest: Quest, now: datetime) -> tuple[str, Window | None]:
        """Period key and window of ``quest`` at ``now``; one-time quests have no window."""
        if quest.cadence == CADENCE_ONE_TIME:
            return period_key(CADENCE_ONE_TIME, None, self._tz), None
        window = window_for(quest.cadence, now, self._tz)
        return period_key(quest.cadence, window, self._tz), window

    async def get_or_create(self, db: AsyncSession, user_id: int, quest: Quest, now: datetime) -> QuestProgress:
        """Progress row for the quest's current period, inserted if missing.

        Concurrent callers race on the (user, quest, period) unique index;
        losers fall through to the re-read.
        """
        key, window = self.current_period(quest, now)
        await db.execute(
            dialect_insert(db, QuestProgress)
            .values(
                user_id=user_id,
                quest_id=quest.id,
                period_key=key,
                period_start=window.start if window else None,
                period_end=window.end if window else None,
                progress_value=0,
                is_completed=False,
                is_claimed=False,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "quest_id", "period_key"])
        )
        return await self._reload(db, user_id=user_id, quest_id=quest.id, period_key=key)

    async def _reload(self, db: AsyncSession, **criteria: Any) -> QuestProgress:
        filters = [getattr(QuestProgress, name) == value for name, value in criteria.items()]
        progress = await db.scalar(
            select(QuestProgress).where(*filters).execution_options(populate_existing=True)
        )
        if progress is None:
            raise NotFoundError("Quest progress not found", criteria)
        return progress

    async def _active_quests(self, db: AsyncSession, now: datetime, cadence: str | None = None) -> list[Quest]:
        query = select(Quest).where(
            Quest.is_active.is_(True),
            Quest.start_at <= now,
            (Quest.end_at.is_(None)) | (Quest.end_at >= now),
        )
        if cadence is not None:
            query = query.where(Quest.cadence == cadence)
        result = await db.execute(query.order_by(Quest.display_order, Quest.created_at, Quest.id))
        return list(result.scalars().all())

    async def _mark_completed_if_reached(self, db: AsyncSession, progress_id: int, target: int, now: datetime) -> bool:
        """Flip is_completed once; completed_at is stamped by the winning update only."""
        result = await db.execute(
            update(QuestProgress)
            .where(
                QuestProgress.id == progress_id,
                QuestProgress.is_completed.is_(False),
                QuestProgress.progress_value >= target,
            )
            .values(is_completed=True, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _sync_xp_threshold(self, db: AsyncSession, user_id: int, quest: Quest, now: datetime) -> QuestProgress:
        """Set progress to the XP earned since the period (or quest) start."""
        progress = await self.get_or_create(db, user_id, quest, now)
        if progress.is_claimed:
            return progress
        since = progress.period_start or quest.start_at
        earned = await self._xp.earned_since(db, user_id, since)
        await db.execute(
            update(QuestProgress)
            .where(QuestProgress.id == progress.id, QuestProgress.is_claimed.is_(False))
            .values(progress_value=max(earned, 0))
            .execution_options(synchronize_session=False)
        )
        await self._mark_completed_if_reached(db, progress.id, rule_target(quest.rule), now)
        return await self._reload(db, id=progress.id)

    # ------------------------------------------------------------------
    # Event feed
    # ------------------------------------------------------------------

    async def record_event(self, event: Event) -> int:
        """Advance every active quest the event counts towards. Returns quests touched."""
        now = self._clock.now()
        touched = 0
        async with self._session_factory() as db, db.begin():
            for quest in await self._active_quests(db, now):
                rule = quest.rule or {}
                rule_type = rule.get("type")

                if rule_type == "custom":
                    continue
                if rule_type == "xp_threshold":
                    await self._sync_xp_threshold(db, event.user_id, quest, now)
                    touched += 1
                    continue
                if not matches_event(rule, event.type):
                    continue

                increment = progress_increment(rule, event.event_metadata or {})
                if increment <= 0:
                    continue

                progress = await self.get_or_create(db, event.user_id, quest, now)
                conditions = [QuestProgress.id == progress.id, QuestProgress.is_claimed.is_(False)]
                if rule_type == "action_once":
                    conditions.append(QuestProgress.progress_value < 1)
                await db.execute(
                    update(QuestProgress)
                    .where(*conditions)
                    .values(
                        progress_value=QuestProgress.progress_value + increment,
                        last_event_id=event.id,
                    )
                    .execution_options(synchronize_session=False)
                )
                if await self._mark_completed_if_reached(db, progress.id, rule_target(rule), now):
                    logger.info("quest_completed", user_id=event.user_id, quest_id=quest.id, event_id=event.id)
                touched += 1
        return touched

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim(self, user_id: int, quest_id: int) -> ClaimResult:
        """Claim the reward of a completed quest for the current period.

        The claimed flag flips through a single compare-and-swap and the
        ledger entry is written in the same transaction, so exactly one
        concurrent claim can pay out.
        """
        now = self._clock.now()
        async with self._session_factory() as db, db.begin():
            quest = await db.get(Quest, quest_id)
            if quest is None:
                raise NotFoundError("Quest not found", {"quest_id": quest_id})
            if not is_currently_active(quest.is_active, quest.start_at, quest.end_at, now):
                raise ConflictError(
                    "Quest is not currently active",
                    {"quest_id": quest_id},
                    error_code="QuestInactive",
                )

            if (quest.rule or {}).get("type") == "xp_threshold":
                progress = await self._sync_xp_threshold(db, user_id, quest, now)
            else:
                progress = await self.get_or_create(db, user_id, quest, now)

            result = await db.execute(
                update(QuestProgress)
                .where(
                    QuestProgress.id == progress.id,
                    QuestProgress.is_completed.is_(True),
                    QuestProgress.is_claimed.is_(False),
                )
                .values(is_claimed=True, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await self._reload(db, id=progress.id)
                if not current.is_completed:
                    raise QuestNotCompletedError(quest_id, current.progress_value)
                raise QuestAlreadyClaimedError(quest_id)

            await self._xp.append(
                db,
                user_id,
                quest.reward_xp,
                "complete_quest",
                description=f"Completed quest: {quest.name}",
                idempotency_key=f"quest:{progress.id}",
            )

        logger.info("quest_claimed", user_id=user_id, quest_id=quest_id, xp_awarded=quest.reward_xp)
        return ClaimResult(
            success=True,
            quest_id=quest_id,
            xp_awarded=quest.reward_xp,
            message="Quest reward claimed successfully",
            progress_id=progress.id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_quests_with_progress(self, user_id: int, cadence: str | None = None) -> list[dict[str, Any]]:
        """Active quests with the user's progress for the current period."""
        if cadence is not None:
            validate_cadence(cadence)
        now = self._clock.now()
        items: list[dict[str, Any]] = []
        async with self._session_factory() as db, db.begin():
            for quest in await self._active_quests(db, now, cadence):
                if (quest.rule or {}).get("type") == "xp_threshold":
                    progress = await self._sync_xp_threshold(db, user_id, quest, now)
                else:
                    progress = await self.get_or_create(db, user_id, quest, now)
                items.append(
                    {
                        "quest": quest,
                        "progress": progress,
                        "target": rule_target(quest.rule or {}),
                        "state": progress_state(progress.progress_value, progress.is_completed, progress.is_claimed),
                    }
                )
        return items

    async def get_history(self, user_id: int, limit: int = 50, skip: int = 0) -> tuple[list[QuestProgress], int]:
        """Claimed progress rows, most recent claim first."""
        filters = [QuestProgress.user_id == user_id, QuestProgress.is_claimed.is_(True)]
        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(QuestProgress).where(*filters)) or 0
            result = await db.execute(
                select(QuestProgress)
                .where(*filters)
                .order_by(QuestProgress.claimed_at.desc(), QuestProgress.id.desc())
                .offset(skip)
                .limit(limit)
            )
            rows = list(result.scalars().all())
        return rows, total

    async def get_quest(self, quest_id: int) -> Quest:
        async with self._session_factory() as db:
            quest = await db.get(Quest, quest_id)
        if quest is None:
            raise NotFoundError("Quest not found", {"quest_id": quest_id})
        return quest

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def create_quest(self, data: dict[str, Any]) -> Quest:
        fields = {k: v for k, v in data.items() if k in _EDITABLE_FIELDS and v is not None}
        if not fields.get("name"):
            raise ValidationError("Quest name is required")
        fields["rule"] = validate_rule(fields.get("rule"))
        fields["cadence"] = validate_cadence(fields.get("cadence", "daily"))
        if int(fields.get("reward_xp", -1)) < 0:
            raise ValidationError("reward_xp must be zero or greater")

        now = self._clock.now()
        fields.setdefault("start_at", now)
        quest = Quest(created_at=now, updated_at=now, **fields)
        async with self._session_factory() as db, db.begin():
            db.add(quest)
        logger.info("quest_created", quest_id=quest.id, name=quest.name)
        return quest

    async def update_quest(self, quest_id: int, changes: dict[str, Any]) -> Quest:
        """Edit a definition. Existing progress rows are not rewritten."""
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError("Unknown quest fields", {"fields": sorted(unknown)})
        nulled = sorted(k for k, v in changes.items() if v is None and k not in _NULLABLE_FIELDS)
        if nulled:
            raise ValidationError("Quest fields cannot be null", {"fields": nulled})
        if "name" in changes and not str(changes["name"]).strip():
            raise ValidationError("Quest name is required")
        if "rule" in changes:
            changes["rule"] = validate_rule(changes["rule"])
        if "cadence" in changes:
            validate_cadence(changes["cadence"])
        if "reward_xp" in changes and int(changes["reward_xp"]) < 0:
            raise ValidationError("reward_xp must be zero or greater")

        async with self._session_factory() as db, db.begin():
            quest = await db.get(Quest, quest_id)
            if quest is None:
                raise NotFoundError("Quest not found", {"quest_id": quest_id})
            for name, value in changes.items():
                setattr(quest, name, value)
            quest.updated_at = self._clock.now()
        logger.info("quest_updated", quest_id=quest_id, fields=sorted(changes))
        return quest

    async def force_complete(self, user_id: int, quest_id: int) -> QuestProgress:
        """Mark the current period complete regardless of the rule (used for ``custom`` quests)."""
        now = self._clock.now()
        async with self._session_factory() as db, db.begin():
            quest = await db.get(Quest, quest_id)
            if quest is None:
                raise NotFoundError("Quest not found", {"quest_id": quest_id})
            if await db.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

            progress = await self.get_or_create(db, user_id, quest, now)
            target = rule_target(quest.rule or {})
            await db.execute(
                update(QuestProgress)
                .where(
                    QuestProgress.id == progress.id,
                    QuestProgress.is_claimed.is_(False),
                    QuestProgress.progress_value < target,
                )
                .values(progress_value=target)
                .execution_options(synchronize_session=False)
            )
            await self._mark_completed_if_reached(db, progress.id, target, now)
            progress = await self._reload(db, id=progress.id)
        logger.warning("quest_force_completed", user_id=user_id, quest_id=quest_id)
        return progress

    async def seed_default_quests(self) -> int:
        """Create default quests that do not exist yet (matched by name)."""
        now = self._clock.now()
        created = 0
        async with self._session_factory() as db, db.begin():
            existing = set((await db.execute(select(Quest.name))).scalars().all())
            for data in DEFAULT_QUESTS:
                if data["name"] in existing:
                    continue
                db.add(Quest(start_at=now, is_active=True, created_at=now, updated_at=now, **data))
                created += 1
        if created:
            logger.info("quests_seeded", created=created)
        return created
