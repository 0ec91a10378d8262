"""Referral state machine.

State progression: pending -> verified -> rewarded, or pending/verified -> rejected.
rewarded and rejected are terminal. Payouts happen only on the winning
verified -> rewarded compare-and-swap, so concurrent verification triggers
pay each party once.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questboard.clock import Clock
from questboard.config import Settings
from questboard.db.models import Event, Referral, User, XPLedger
from questboard.errors import (
    AlreadyReferredError,
    InvalidReferralCodeError,
    InvalidTransitionError,
    NotFoundError,
    SelfReferralError,
    ValidationError,
)
from questboard.referrals.codes import normalize_referral_code
from questboard.xp.service import XPService

logger = structlog.get_logger()

REFERRAL_STATUSES: tuple[str, ...] = ("pending", "verified", "rewarded", "rejected")

VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["verified", "rejected"],
    "verified": ["rewarded", "rejected"],
    "rewarded": [],
    "rejected": [],
}

OVERRIDE_ACTIONS: tuple[str, ...] = ("approve", "reject")


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a referral transition. Raises InvalidTransitionError if invalid."""
    if target_status not in VALID_TRANSITIONS.get(current_status, []):
        raise InvalidTransitionError("referral", current_status, target_status)


class ReferralService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: Settings,
        xp: XPService,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._xp = xp
        self.inviter_xp = settings.referral_inviter_xp
        self.invitee_xp = settings.referral_invitee_xp
        self.qualifying_event_types = list(settings.referral_qualifying_event_types)
        self.min_qualifying_events = settings.referral_min_qualifying_events

    # ------------------------------------------------------------------
    # Track
    # ------------------------------------------------------------------

    async def track(self, code: str, invitee_user_id: int, metadata: dict[str, Any] | None = None) -> Referral:
        """Record that ``invitee_user_id`` signed up with ``code``. Creates a pending referral."""
        normalized = normalize_referral_code(code)
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    inviter = await db.scalar(select(User).where(User.referral_code == normalized))
                    if inviter is None:
                        raise InvalidReferralCodeError(code)
                    if inviter.id == invitee_user_id:
                        raise SelfReferralError()
                    if await db.scalar(select(Referral.id).where(Referral.invitee_user_id == invitee_user_id)):
                        raise AlreadyReferredError(invitee_user_id)

                    referral = Referral(
                        inviter_user_id=inviter.id,
                        invitee_user_id=invitee_user_id,
                        referral_code_used=normalized,
                        status="pending",
                        referral_metadata=dict(metadata or {}),
                        created_at=self._clock.now(),
                    )
                    db.add(referral)
                    await db.flush()
            except IntegrityError as exc:
                # Lost the race on the unique invitee index
                if "invitee_user_id" in str(exc.orig):
                    raise AlreadyReferredError(invitee_user_id) from exc
                raise

        logger.info(
            "referral_tracked",
            referral_id=referral.id,
            inviter_user_id=referral.inviter_user_id,
            invitee_user_id=invitee_user_id,
        )
        return referral

    # ------------------------------------------------------------------
    # Verification and payout
    # ------------------------------------------------------------------

    async def criteria_met(self, db: AsyncSession, invitee_user_id: int) -> bool:
        """Invitee has enough processed events of a qualifying type."""
        count = await db.scalar(
            select(func.count())
            .select_from(Event)
            .where(
                Event.user_id == invitee_user_id,
                Event.status == "processed",
                Event.type.in_(self.qualifying_event_types),
            )
        )
        return (count or 0) >= self.min_qualifying_events

    async def _set_status(
        self,
        db: AsyncSession,
        referral_id: int,
        sources: list[str],
        target_status: str,
        **values: Any,
    ) -> bool:
        result = await db.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.status.in_(sources))
            .values(status=target_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def distribute_rewards(
        self,
        db: AsyncSession,
        referral: Referral,
        inviter_xp: int,
        invitee_xp: int,
    ) -> bool:
        """verified -> rewarded, paying both parties only if this call won the transition."""
        now = self._clock.now()
        if not await self._set_status(db, referral.id, ["verified"], "rewarded", rewarded_at=now):
            return False

        await self._xp.append(
            db,
            referral.inviter_user_id,
            inviter_xp,
            "referral_inviter",
            description="Referral reward",
            idempotency_key=f"referral:{referral.id}:inviter",
        )
        await self._xp.append(
            db,
            referral.invitee_user_id,
            invitee_xp,
            "referral_invitee",
            description="Referral welcome bonus",
            idempotency_key=f"referral:{referral.id}:invitee",
        )
        logger.info(
            "referral_rewarded",
            referral_id=referral.id,
            inviter_xp=inviter_xp,
            invitee_xp=invitee_xp,
        )
        return True

    async def check_verification(self, referral_id: int) -> bool:
        """Verify and reward one referral if its criteria hold. Returns True if this call paid out."""
        now = self._clock.now()
        async with self._session_factory() as db, db.begin():
            referral = await db.get(Referral, referral_id)
            if referral is None:
                raise NotFoundError("Referral not found", {"referral_id": referral_id})
            if referral.status not in ("pending", "verified"):
                return False
            if referral.status == "pending":
                if not await self.criteria_met(db, referral.invitee_user_id):
                    return False
                if await self._set_status(db, referral.id, ["pending"], "verified", verified_at=now):
                    logger.info("referral_verified", referral_id=referral.id)
            return await self.distribute_rewards(db, referral, self.inviter_xp, self.invitee_xp)

    async def check_and_verify(self, user_id: int) -> list[int]:
        """Run verification for the referral where ``user_id`` is the invitee. Returns ids paid out."""
        async with self._session_factory() as db:
            ids = (
                await db.execute(
                    select(Referral.id).where(
                        Referral.invitee_user_id == user_id,
                        Referral.status.in_(("pending", "verified")),
                    )
                )
            ).scalars().all()

        paid = []
        for referral_id in ids:
            if await self.check_verification(referral_id):
                paid.append(referral_id)
        return paid

    async def on_event(self, event: Event) -> None:
        """Event listener: qualifying activity by an invitee may verify their referral."""
        if event.type in self.qualifying_event_types:
            await self.check_and_verify(event.user_id)

    async def override(self, referral_id: int, action: str, reason: str | None = None) -> Referral:
        """Admin decision. ``approve`` pays out without criteria, ``reject`` freezes the row."""
        if action not in OVERRIDE_ACTIONS:
            raise ValidationError('Invalid action. Use "approve" or "reject"', {"action": action})

        now = self._clock.now()
        async with self._session_factory() as db, db.begin():
            referral = await db.get(Referral, referral_id)
            if referral is None:
                raise NotFoundError("Referral not found", {"referral_id": referral_id})

            if action == "reject":
                validate_transition(referral.status, "rejected")
                if not await self._set_status(
                    db,
                    referral.id,
                    ["pending", "verified"],
                    "rejected",
                    rejected_at=now,
                    rejection_reason=(reason or "")[:256] or None,
                ):
                    raise InvalidTransitionError("referral", referral.status, "rejected")
            else:
                if referral.status == "pending":
                    await self._set_status(db, referral.id, ["pending"], "verified", verified_at=now)
                else:
                    validate_transition(referral.status, "rewarded")
                if not await self.distribute_rewards(db, referral, self.inviter_xp, self.invitee_xp):
                    raise InvalidTransitionError("referral", referral.status, "rewarded")

            updated = await db.scalar(
                select(Referral).where(Referral.id == referral_id).execution_options(populate_existing=True)
            )

        logger.warning("referral_overridden", referral_id=referral_id, action=action, reason=reason)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def verify_code(self, code: str) -> dict[str, Any]:
        """Whether a code belongs to a user, with that user's rewarded referral count."""
        normalized = normalize_referral_code(code)
        async with self._session_factory() as db:
            inviter = await db.scalar(select(User).where(User.referral_code == normalized))
            if inviter is None:
                return {"valid": False, "referral_code": normalized, "referral_count": 0}
            count = await db.scalar(
                select(func.count())
                .select_from(Referral)
                .where(Referral.inviter_user_id == inviter.id, Referral.status == "rewarded")
            )
        return {"valid": True, "referral_code": inviter.referral_code, "referral_count": count or 0}

    async def get_stats(self, user_id: int) -> dict[str, Any]:
        async with self._session_factory() as db:
            user = await db.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
            rows = (
                await db.execute(
                    select(Referral.status, func.count())
                    .where(Referral.inviter_user_id == user_id)
                    .group_by(Referral.status)
                )
            ).all()
            xp_earned = await db.scalar(
                select(func.coalesce(func.sum(XPLedger.delta_xp), 0)).where(
                    XPLedger.user_id == user_id,
                    XPLedger.reason == "referral_inviter",
                )
            )
            referred_by = await db.scalar(
                select(Referral.inviter_user_id).where(Referral.invitee_user_id == user_id)
            )

        by_status = {status: 0 for status in REFERRAL_STATUSES}
        by_status.update({status: count for status, count in rows})
        return {
            "referral_code": user.referral_code,
            "total": sum(by_status.values()),
            **by_status,
            "xp_earned": int(xp_earned or 0),
            "referred_by_user_id": referred_by,
        }

    async def get_history(
        self,
        user_id: int,
        status: str | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[Referral], int]:
        """Referrals made by ``user_id``, newest first."""
        if status is not None and status not in REFERRAL_STATUSES:
            raise ValidationError(f"Unknown referral status: {status}", {"allowed": list(REFERRAL_STATUSES)})
        filters = [Referral.inviter_user_id == user_id]
        if status is not None:
            filters.append(Referral.status == status)

        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(Referral).where(*filters)) or 0
            result = await db.execute(
                select(Referral)
                .where(*filters)
                .order_by(Referral.created_at.desc(), Referral.id.desc())
                .offset(skip)
                .limit(limit)
            )
            rows = list(result.scalars().all())
        return rows, total

    async def get(self, referral_id: int) -> Referral:
        async with self._session_factory() as db:
            referral = await db.get(Referral, referral_id)
        if referral is None:
            raise NotFoundError("Referral not found", {"referral_id": referral_id})
        return referral

