"""XP ledger and rule engine.

Every XP change is an immutable ``xp_ledger`` row; a user's XP is the sum
of their rows. ``process_event`` is the single entry point turning an
activity into XP: the event insert, cap check, ledger append and status
change share one transaction, and the unique dedup key on the event is
what makes retries and concurrent submissions safe.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock
from questboard.config import Settings
from questboard.db.models import Event, User, UserXP, XPLedger, XPRule
from questboard.db.upsert import dialect_insert
from questboard.errors import DuplicateEventError, NotFoundError, ValidationError
from questboard.events.service import EventStore
from questboard.periods import Window, window_for
from questboard.xp.level_thresholds import compute_level
from questboard.xp.rules import DEFAULT_XP_RULES, XP_WINDOWS

logger = structlog.get_logger()

LEDGER_REASONS: tuple[str, ...] = (
    "event",
    "complete_quest",
    "referral_inviter",
    "referral_invitee",
    "admin_adjustment",
)

EventListener = Callable[[Event], Awaitable[None]]


@dataclass
class EventResult:
    """Outcome of ``process_event``. Duplicates and cooldowns are not errors."""

    awarded: bool
    xp_awarded: int = 0
    next_available_at: datetime | None = None
    event_id: int | None = None
    message: str = ""
    duplicate: bool = False


class XPService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: Settings,
        events: EventStore,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self._events = events
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        """Register a coroutine called with every processed event, after commit."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def get_rule(self, db: AsyncSession, event_type: str) -> XPRule | None:
        return await db.scalar(
            select(XPRule).where(XPRule.event_type == event_type, XPRule.is_active.is_(True))
        )

    async def list_rules(self) -> list[XPRule]:
        async with self._session_factory() as db:
            result = await db.execute(select(XPRule).order_by(XPRule.id))
            return list(result.scalars().all())

    async def seed_default_rules(self) -> int:
        """Insert missing default rules. Existing rows are left untouched."""
        inserted = 0
        async with self._session_factory() as db, db.begin():
            for rule in DEFAULT_XP_RULES:
                result = await db.execute(
                    dialect_insert(db, XPRule)
                    .values(is_active=True, **rule)
                    .on_conflict_do_nothing(index_elements=["event_type"])
                )
                inserted += result.rowcount or 0
        if inserted:
            logger.info("xp_rules_seeded", inserted=inserted)
        return inserted

    async def _cap_window(self, db: AsyncSession, user_id: int, rule: XPRule, at: datetime) -> Window | None:
        """Return the current window if the rule's per-window cap is already used up."""
        if rule.max_awards is None or rule.window not in XP_WINDOWS:
            return None
        window = window_for(rule.window, at, self._tz)
        awarded = await db.scalar(
            select(func.count())
            .select_from(Event)
            .where(
                Event.user_id == user_id,
                Event.type == rule.event_type,
                Event.status == "processed",
                Event.occurred_at >= window.start,
                Event.occurred_at <= window.end,
            )
        )
        return window if (awarded or 0) >= rule.max_awards else None

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def append(
        self,
        db: AsyncSession,
        user_id: int,
        delta: int,
        reason: str,
        description: str | None = None,
        related_event_id: int | None = None,
        idempotency_key: str | None = None,
    ) -> XPLedger | None:
        """Append a ledger entry inside the caller's transaction.

        Returns None if an entry with the same idempotency key already
        exists. The unique index on the key backs this check up under races.
        """
        if reason not in LEDGER_REASONS:
            raise ValidationError(f"Unknown ledger reason: {reason}", {"reason": reason})

        if idempotency_key is not None:
            existing = await db.scalar(select(XPLedger.id).where(XPLedger.idempotency_key == idempotency_key))
            if existing is not None:
                return None

        now = self._clock.now()
        entry = XPLedger(
            user_id=user_id,
            delta_xp=delta,
            reason=reason,
            description=description,
            related_event_id=related_event_id,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        db.add(entry)
        await db.flush()

        # Cached total
        await db.execute(
            dialect_insert(db, UserXP)
            .values(user_id=user_id, total_xp=delta, updated_at=now)
            .on_conflict_do_update(
                index_elements=["user_id"],
                set_={"total_xp": UserXP.total_xp + delta, "updated_at": now},
            )
        )
        return entry

    async def earned_since(self, db: AsyncSession, user_id: int, start: datetime) -> int:
        """Sum of ledger deltas for a user created at or after ``start``."""
        total = await db.scalar(
            select(func.coalesce(func.sum(XPLedger.delta_xp), 0)).where(
                XPLedger.user_id == user_id,
                XPLedger.created_at >= start,
            )
        )
        return int(total or 0)

    # ------------------------------------------------------------------
    # Event pipeline
    # ------------------------------------------------------------------

    async def process_event(
        self,
        user_id: int,
        event_type: str,
        metadata: dict[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> EventResult:
        """Record an activity and award XP for it according to its rule."""
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    event = await self._events.insert(db, user_id, event_type, metadata, dedup_key)
                    rule = await self.get_rule(db, event_type)

                    if rule is None:
                        await self._events.mark_processed(db, event.id)
                        outcome = EventResult(
                            awarded=False,
                            event_id=event.id,
                            message="Event recorded; no XP rule for this type",
                        )
                    else:
                        window = await self._cap_window(db, user_id, rule, event.occurred_at)
                        if window is not None:
                            await self._events.mark_rejected(db, event.id, "cooldown")
                            logger.info(
                                "xp_cooldown",
                                user_id=user_id,
                                type=event_type,
                                next_available_at=window.next_start,
                            )
                            return EventResult(
                                awarded=False,
                                next_available_at=window.next_start,
                                event_id=event.id,
                                message="XP for this action was already earned in the current period",
                            )

                        await self.append(
                            db,
                            user_id,
                            rule.xp_amount,
                            "event",
                            description=rule.description or event_type,
                            related_event_id=event.id,
                            idempotency_key=f"event:{event.id}",
                        )
                        await self._events.mark_processed(db, event.id)
                        outcome = EventResult(
                            awarded=rule.xp_amount > 0,
                            xp_awarded=rule.xp_amount,
                            event_id=event.id,
                            message=f"Earned {rule.xp_amount} XP",
                        )
            except DuplicateEventError as exc:
                logger.info("event_duplicate", user_id=user_id, type=event_type, dedup_key=exc.dedup_key)
                return EventResult(awarded=False, message="Event already recorded", duplicate=True)

        logger.info(
            "event_processed",
            user_id=user_id,
            type=event_type,
            event_id=event.id,
            xp_awarded=outcome.xp_awarded,
        )
        await self._notify(event)
        return outcome

    async def _notify(self, event: Event) -> None:
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                # XP is already committed at this point
                logger.exception(
                    "event_listener_failed",
                    event_id=event.id,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_summary(self, user_id: int) -> dict[str, Any]:
        """XP total from the ledger, level info and a per-reason breakdown."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    XPLedger.reason,
                    func.coalesce(func.sum(XPLedger.delta_xp), 0),
                    func.count(),
                )
                .where(XPLedger.user_id == user_id)
                .group_by(XPLedger.reason)
            )
            rows = result.all()

        by_reason = {reason: int(total) for reason, total, _ in rows}
        total_xp = sum(by_reason.values())
        level_info = compute_level(total_xp)
        return {
            "user_id": user_id,
            "total_xp": total_xp,
            "level": level_info["level"],
            "level_title": level_info["title"],
            "xp_into_level": level_info["xp_into_level"],
            "xp_for_level": level_info["xp_for_level"],
            "next_level": level_info["next_level"],
            "next_title": level_info["next_title"],
            "entry_count": sum(count for _, _, count in rows),
            "by_reason": by_reason,
        }

    async def get_ledger(
        self,
        user_id: int,
        reason: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[XPLedger], int]:
        """Page through a user's ledger, newest first. Returns (entries, total)."""
        filters = [XPLedger.user_id == user_id]
        if reason is not None:
            filters.append(XPLedger.reason == reason)
        if start is not None:
            filters.append(XPLedger.created_at >= start)
        if end is not None:
            filters.append(XPLedger.created_at <= end)

        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(XPLedger).where(*filters)) or 0
            result = await db.execute(
                select(XPLedger)
                .where(*filters)
                .order_by(XPLedger.created_at.desc(), XPLedger.id.desc())
                .offset(skip)
                .limit(limit)
            )
            entries = list(result.scalars().all())
        return entries, total

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def admin_adjust(
        self,
        user_id: int,
        delta: int,
        description: str,
        idempotency_key: str | None = None,
    ) -> XPLedger | None:
        """Manual correction, recorded as an ``admin_adjustment`` entry."""
        if delta == 0:
            raise ValidationError("Adjustment must be non-zero")

        async with self._session_factory() as db, db.begin():
            if await db.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
            entry = await self.append(
                db,
                user_id,
                delta,
                "admin_adjustment",
                description=description,
                idempotency_key=idempotency_key,
            )

        logger.warning("xp_admin_adjustment", user_id=user_id, delta=delta, description=description)
        return entry
