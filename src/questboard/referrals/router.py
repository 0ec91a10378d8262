"""Referral endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import Referral, User
from questboard.dependencies import get_engine
from questboard.engine import GamificationEngine
from questboard.referrals.schemas import (
    AdminReferralOverrideRequest,
    ReferralHistoryResponse,
    ReferralResponse,
    ReferralStatsResponse,
    TrackReferralRequest,
    TrackReferralResponse,
    VerifyCodeResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Referrals"])


def _referral_response(referral: Referral) -> ReferralResponse:
    return ReferralResponse(
        id=referral.id,
        inviter_user_id=referral.inviter_user_id,
        invitee_user_id=referral.invitee_user_id,
        referral_code_used=referral.referral_code_used,
        status=referral.status,
        metadata=referral.referral_metadata or {},
        created_at=referral.created_at,
        verified_at=referral.verified_at,
        rewarded_at=referral.rewarded_at,
        rejected_at=referral.rejected_at,
        rejection_reason=referral.rejection_reason,
    )


# ── Public endpoints ──


@router.get("/referrals/verify/{code}", response_model=VerifyCodeResponse)
async def verify_referral_code(code: str, engine: GamificationEngine = Depends(get_engine)):
    """Check whether a referral code exists."""
    return VerifyCodeResponse(**await engine.verify_referral_code(code))


# ── Authenticated endpoints ──


@router.post("/referrals/track", response_model=TrackReferralResponse)
async def track_referral(
    body: TrackReferralRequest,
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Record that the current user signed up with a referral code."""
    result = await engine.track_referral(body.referral_code, user.id, body.metadata)
    if not result["success"]:
        return JSONResponse(
            status_code=result["status_code"],
            content=TrackReferralResponse(
                success=False,
                message=result["message"],
                error_code=result["error_code"],
            ).model_dump(),
        )
    return TrackReferralResponse(
        success=True,
        message=result["message"],
        referral=_referral_response(result["referral"]),
    )


@router.get("/referrals/me", response_model=ReferralStatsResponse)
async def my_referral_stats(
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's referral code and counts."""
    return ReferralStatsResponse(**await engine.referrals.get_stats(user.id))


@router.get("/referrals/history", response_model=ReferralHistoryResponse)
async def referral_history(
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the referrals the current user has made, newest first."""
    referrals, total = await engine.referrals.get_history(user.id, status=status, limit=limit, skip=skip)
    return ReferralHistoryResponse(
        referrals=[_referral_response(r) for r in referrals],
        total=total,
        limit=limit,
        skip=skip,
    )


# ── Admin ──


@router.post("/admin/referrals/{referral_id}/override", response_model=ReferralResponse)
async def override_referral(
    referral_id: int,
    body: AdminReferralOverrideRequest,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Approve or reject a referral (admin)."""
    referral = await engine.referrals.override(referral_id, body.action, body.reason)
    return _referral_response(referral)
