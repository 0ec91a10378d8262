"""Referral tracking, verification and payout."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from questboard.db.models import XPLedger
from questboard.errors import (
    AlreadyReferredError,
    InvalidReferralCodeError,
    InvalidTransitionError,
    SelfReferralError,
    ValidationError,
)

pytestmark = pytest.mark.asyncio


async def _referral_ledger(session_factory) -> list[tuple[int, str, int]]:
    async with session_factory() as db:
        rows = await db.execute(
            select(XPLedger.user_id, XPLedger.reason, XPLedger.delta_xp)
            .where(XPLedger.reason.in_(("referral_inviter", "referral_invitee")))
            .order_by(XPLedger.id)
        )
        return [tuple(row) for row in rows]


async def _processed_event_without_listeners(engine, session_factory, user_id: int, event_type: str) -> None:
    event = await engine.events.submit(user_id, event_type)
    async with session_factory() as db, db.begin():
        await engine.events.mark_processed(db, event.id)


class TestTrack:
    async def test_creates_pending_referral(self, engine, make_user):
        inviter = await make_user()
        invitee = await make_user()

        referral = await engine.referrals.track(inviter.referral_code.lower(), invitee.id, {"utm": "twitter"})
        assert referral.status == "pending"
        assert referral.inviter_user_id == inviter.id
        assert referral.referral_code_used == inviter.referral_code
        assert referral.referral_metadata == {"utm": "twitter"}

    async def test_unknown_code(self, engine, make_user):
        invitee = await make_user()
        with pytest.raises(InvalidReferralCodeError):
            await engine.referrals.track("ZZZZZZZZ", invitee.id)

    async def test_self_referral(self, engine, make_user):
        user = await make_user()
        with pytest.raises(SelfReferralError):
            await engine.referrals.track(user.referral_code, user.id)

    async def test_referred_at_most_once(self, engine, make_user):
        first = await make_user()
        second = await make_user()
        invitee = await make_user()
        await engine.referrals.track(first.referral_code, invitee.id)
        with pytest.raises(AlreadyReferredError):
            await engine.referrals.track(second.referral_code, invitee.id)

    async def test_concurrent_tracks_create_one_row(self, engine, make_user):
        inviters = [await make_user() for _ in range(5)]
        invitee = await make_user()

        results = await asyncio.gather(
            *(engine.track_referral(i.referral_code, invitee.id) for i in inviters)
        )

        assert sum(1 for r in results if r["success"]) == 1
        assert all(r["status_code"] == 409 for r in results if not r["success"])

    async def test_facade_maps_unknown_code_to_404(self, engine, make_user):
        invitee = await make_user()
        result = await engine.track_referral("NOPE1234", invitee.id)
        assert result["success"] is False
        assert result["status_code"] == 404


class TestVerification:
    async def test_qualifying_event_pays_both_parties(self, engine, make_user, session_factory):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)

        await engine.submit_event(invitee.id, "deposit", {"amount": "50"})

        stored = await engine.referrals.get(referral.id)
        assert stored.status == "rewarded"
        assert stored.verified_at is not None
        assert stored.rewarded_at is not None
        assert await _referral_ledger(session_factory) == [
            (inviter.id, "referral_inviter", 500),
            (invitee.id, "referral_invitee", 100),
        ]

    async def test_non_qualifying_event_keeps_pending(self, engine, make_user):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)

        await engine.submit_event(invitee.id, "connect_wallet")
        assert (await engine.referrals.get(referral.id)).status == "pending"
        assert await engine.referrals.check_verification(referral.id) is False

    async def test_inviter_activity_does_not_verify(self, engine, make_user):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)

        await engine.submit_event(inviter.id, "supply")
        assert (await engine.referrals.get(referral.id)).status == "pending"

    async def test_concurrent_verification_pays_once(self, engine, make_user, session_factory):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)
        await _processed_event_without_listeners(engine, session_factory, invitee.id, "swap")

        results = await asyncio.gather(*(engine.referrals.check_verification(referral.id) for _ in range(10)))

        assert results.count(True) == 1
        assert len(await _referral_ledger(session_factory)) == 2

    async def test_repeat_triggers_after_payout_are_noops(self, engine, make_user, session_factory):
        inviter = await make_user()
        invitee = await make_user()
        await engine.referrals.track(inviter.referral_code, invitee.id)

        await engine.submit_event(invitee.id, "swap")
        await engine.submit_event(invitee.id, "supply")
        assert await engine.referrals.check_and_verify(invitee.id) == []
        assert len(await _referral_ledger(session_factory)) == 2


class TestOverride:
    async def test_reject_freezes_referral(self, engine, make_user, session_factory):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)

        rejected = await engine.referrals.override(referral.id, "reject", "sybil cluster")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "sybil cluster"

        await engine.submit_event(invitee.id, "deposit")
        assert (await engine.referrals.get(referral.id)).status == "rejected"
        assert await _referral_ledger(session_factory) == []

        with pytest.raises(InvalidTransitionError):
            await engine.referrals.override(referral.id, "approve")

    async def test_approve_pays_without_criteria(self, engine, make_user, session_factory):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)

        approved = await engine.referrals.override(referral.id, "approve", "partner campaign")
        assert approved.status == "rewarded"
        assert len(await _referral_ledger(session_factory)) == 2

        with pytest.raises(InvalidTransitionError):
            await engine.referrals.override(referral.id, "reject")

    async def test_unknown_action(self, engine, make_user):
        inviter = await make_user()
        invitee = await make_user()
        referral = await engine.referrals.track(inviter.referral_code, invitee.id)
        with pytest.raises(ValidationError):
            await engine.referrals.override(referral.id, "escalate")


class TestReads:
    async def test_verify_code(self, engine, make_user):
        inviter = await make_user()
        invitee = await make_user()
        await engine.referrals.track(inviter.referral_code, invitee.id)
        await engine.submit_event(invitee.id, "swap")

        result = await engine.verify_referral_code(inviter.referral_code.lower())
        assert result == {"valid": True, "referral_code": inviter.referral_code, "referral_count": 1}
        assert (await engine.verify_referral_code("AAAAAAAA"))["valid"] is False

    async def test_stats_and_history(self, engine, make_user, clock):
        inviter = await make_user()
        rewarded = await make_user()
        pending = await make_user()
        await engine.referrals.track(inviter.referral_code, rewarded.id)
        clock.advance(minutes=1)
        await engine.referrals.track(inviter.referral_code, pending.id)
        await engine.submit_event(rewarded.id, "borrow")

        stats = await engine.referrals.get_stats(inviter.id)
        assert stats["total"] == 2
        assert stats["rewarded"] == 1
        assert stats["pending"] == 1
        assert stats["xp_earned"] == 500

        invitee_stats = await engine.referrals.get_stats(rewarded.id)
        assert invitee_stats["referred_by_user_id"] == inviter.id

        history, total = await engine.referrals.get_history(inviter.id)
        assert total == 2
        assert [r.invitee_user_id for r in history] == [pending.id, rewarded.id]

        only_pending, total = await engine.referrals.get_history(inviter.id, status="pending")
        assert total == 1
        assert only_pending[0].invitee_user_id == pending.id

        with pytest.raises(ValidationError):
            await engine.referrals.get_history(inviter.id, status="lost")
