"""Event store: append-only activity records deduplicated by a unique key.

Status progression: pending -> verified -> processed, or -> failed / rejected.
External verification is optional, so pending may go straight to processed.
Terminal statuses only change through ``admin_set_status``.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock
from questboard.db.models import Event
from questboard.errors import (
    DuplicateEventError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()

EVENT_TYPES: tuple[str, ...] = (
    "connect_wallet",
    "deposit",
    "supply",
    "borrow",
    "swap",
    "claim_faucet",
    "complete_quest",
    "referral_verified",
    "select_strategy",
    "claim_reward",
    "other",
)

EVENT_STATUSES: tuple[str, ...] = ("pending", "verified", "processed", "failed", "rejected")

VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["verified", "processed", "failed", "rejected"],
    "verified": ["processed", "failed", "rejected"],
    "processed": [],
    "failed": [],
    "rejected": [],
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate an event status transition. Raises InvalidTransitionError if invalid."""
    if target_status not in VALID_TRANSITIONS.get(current_status, []):
        raise InvalidTransitionError("event", current_status, target_status)


def _sources_for(target_status: str) -> list[str]:
    return [src for src, targets in VALID_TRANSITIONS.items() if target_status in targets]


DEDUP_KEY_MAX_LENGTH = 256
_KEEP_PREFIX = 64


def _bounded(key: str) -> str:
    """Fit the dedup_key column; long keys keep a readable prefix plus a digest of the whole key."""
    if len(key) <= DEDUP_KEY_MAX_LENGTH:
        return key
    return f"{key[:_KEEP_PREFIX]}#{hashlib.sha256(key.encode()).hexdigest()}"


def build_dedup_key(user_id: int, event_type: str, metadata: dict[str, Any], now: datetime) -> str:
    """Derive a dedup key when the caller supplies none.

    On-chain activity dedups on its transaction hash; anything else gets a
    time-plus-random key and is effectively never deduplicated.
    """
    tx_hash = metadata.get("txHash") or metadata.get("tx_hash")
    if tx_hash:
        return _bounded(f"{user_id}_{event_type}_{tx_hash}")
    millis = int(now.timestamp() * 1000)
    return f"{user_id}_{event_type}_{millis}_{secrets.token_hex(4)}"


def scoped_dedup_key(user_id: int, dedup_key: str) -> str:
    """Caller-supplied keys live under ``<user_id>:key:``, apart from derived keys and other users."""
    return _bounded(f"{user_id}:key:{dedup_key}")


def _is_dedup_violation(exc: IntegrityError) -> bool:
    return "dedup_key" in str(exc.orig)


class EventStore:
    """Append-only event persistence with status transitions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def insert(
        self,
        db: AsyncSession,
        user_id: int,
        event_type: str,
        metadata: dict[str, Any] | None,
        dedup_key: str | None = None,
    ) -> Event:
        """Insert an event inside the caller's transaction.

        The unique index on ``dedup_key`` decides duplicates at flush time;
        a collision raises DuplicateEventError and leaves the caller's
        transaction to be rolled back.
        """
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type: {event_type}", {"type": event_type})
        metadata = dict(metadata or {})
        now = self._clock.now()
        if dedup_key:
            key = scoped_dedup_key(user_id, dedup_key)
        else:
            key = build_dedup_key(user_id, event_type, metadata, now)

        event = Event(
            user_id=user_id,
            type=event_type,
            dedup_key=key,
            event_metadata=metadata,
            occurred_at=now,
            status="pending",
            created_at=now,
        )
        db.add(event)
        try:
            await db.flush()
        except IntegrityError as exc:
            if _is_dedup_violation(exc):
                raise DuplicateEventError(key) from exc
            raise
        return event

    async def submit(
        self,
        user_id: int,
        event_type: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Event:
        """Insert and commit a pending event in its own transaction."""
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    event = await self.insert(db, user_id, event_type, metadata, idempotency_key)
            except DuplicateEventError:
                logger.info("event_duplicate", user_id=user_id, type=event_type)
                raise
        return event

    async def _transition(
        self,
        db: AsyncSession,
        event_id: int,
        target_status: str,
        **values: Any,
    ) -> None:
        result = await db.execute(
            update(Event)
            .where(Event.id == event_id, Event.status.in_(_sources_for(target_status)))
            .values(status=target_status, **values)
        )
        if result.rowcount == 1:
            return

        current = await db.scalar(select(Event.status).where(Event.id == event_id))
        if current is None:
            raise NotFoundError(f"Event {event_id} not found", {"event_id": event_id})
        raise InvalidTransitionError("event", current, target_status)

    async def mark_verified(self, db: AsyncSession, event_id: int) -> None:
        await self._transition(db, event_id, "verified", verified_at=self._clock.now())

    async def mark_processed(self, db: AsyncSession, event_id: int) -> None:
        await self._transition(db, event_id, "processed", processed_at=self._clock.now())

    async def mark_failed(self, db: AsyncSession, event_id: int, reason: str) -> None:
        await self._transition(db, event_id, "failed", error_message=reason[:512])

    async def mark_rejected(self, db: AsyncSession, event_id: int, reason: str) -> None:
        await self._transition(db, event_id, "rejected", error_message=reason[:512])

    async def admin_set_status(self, event_id: int, status: str, reason: str | None = None) -> Event:
        """Corrective override; bypasses the transition table."""
        if status not in EVENT_STATUSES:
            raise ValidationError(f"Unknown event status: {status}", {"status": status})

        async with self._session_factory() as db, db.begin():
            event = await db.get(Event, event_id)
            if event is None:
                raise NotFoundError(f"Event {event_id} not found", {"event_id": event_id})
            previous = event.status
            now = self._clock.now()
            event.status = status
            if status == "verified":
                event.verified_at = now
            elif status == "processed":
                event.processed_at = now
            if reason is not None:
                event.error_message = reason[:512]

        logger.warning(
            "event_status_overridden",
            event_id=event_id,
            previous=previous,
            status=status,
            reason=reason,
        )
        return event

    async def get(self, event_id: int) -> Event:
        async with self._session_factory() as db:
            event = await db.get(Event, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", {"event_id": event_id})
        return event

    async def list_user_events(
        self,
        user_id: int,
        event_type: str | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[Event], int]:
        """Page through a user's events, newest first. Returns (events, total)."""
        filters = [Event.user_id == user_id]
        if event_type is not None:
            filters.append(Event.type == event_type)
        if status is not None:
            filters.append(Event.status == status)
        if start is not None:
            filters.append(Event.occurred_at >= start)
        if end is not None:
            filters.append(Event.occurred_at <= end)

        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(Event).where(*filters)) or 0
            result = await db.execute(
                select(Event)
                .where(*filters)
                .order_by(Event.occurred_at.desc(), Event.id.desc())
                .offset(skip)
                .limit(limit)
            )
            events = list(result.scalars().all())
        return events, total
