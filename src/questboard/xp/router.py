"""XP endpoints: summary, ledger, rules and levels."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import User, XPLedger
from questboard.dependencies import get_engine
from questboard.engine import GamificationEngine
from questboard.errors import ValidationError
from questboard.xp.level_thresholds import LEVEL_THRESHOLDS
from questboard.xp.schemas import (
    AdminXPAdjustRequest,
    AllLevelsResponse,
    LedgerEntryResponse,
    LedgerResponse,
    LevelEntry,
    XPRuleResponse,
    XPRulesResponse,
    XPSummaryResponse,
)
from questboard.xp.service import LEDGER_REASONS

router = APIRouter(prefix="/api/v1", tags=["XP"])


def _entry_response(entry: XPLedger) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        delta_xp=entry.delta_xp,
        reason=entry.reason,
        description=entry.description,
        related_event_id=entry.related_event_id,
        created_at=entry.created_at,
    )


# ── Public endpoints ──


@router.get("/xp/rules", response_model=XPRulesResponse)
async def list_rules(engine: GamificationEngine = Depends(get_engine)):
    """Get every XP rule."""
    rules = await engine.xp.list_rules()
    return XPRulesResponse(
        rules=[
            XPRuleResponse(
                event_type=r.event_type,
                xp_amount=r.xp_amount,
                window=r.window,
                max_awards=r.max_awards,
                description=r.description,
                is_active=r.is_active,
            )
            for r in rules
        ]
    )


@router.get("/xp/levels", response_model=AllLevelsResponse)
async def list_levels():
    """Get all level definitions."""
    return AllLevelsResponse(
        levels=[
            LevelEntry(
                level=t["level"],
                title=t["title"],
                xp_required=t["xp_required"],
                cumulative=t["cumulative"],
            )
            for t in LEVEL_THRESHOLDS
        ]
    )


# ── Authenticated endpoints ──


@router.get("/xp/me", response_model=XPSummaryResponse)
async def get_my_xp(
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's XP total and level."""
    summary = await engine.get_user_xp_summary(user.id)
    return XPSummaryResponse(**{k: v for k, v in summary.items() if k != "user_id"})


@router.get("/xp/ledger", response_model=LedgerResponse)
async def get_my_ledger(
    reason: str | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's XP transactions, newest first."""
    if reason is not None and reason not in LEDGER_REASONS:
        raise ValidationError(f"Unknown ledger reason: {reason}", {"allowed": list(LEDGER_REASONS)})
    entries, total = await engine.get_user_ledger(user.id, reason=reason, start=start, end=end, limit=limit, skip=skip)
    return LedgerResponse(
        entries=[_entry_response(e) for e in entries],
        total=total,
        limit=limit,
        skip=skip,
    )


# ── Admin ──


@router.post("/admin/xp/adjust", response_model=LedgerEntryResponse | None)
async def adjust_xp(
    body: AdminXPAdjustRequest,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Manual XP correction (admin). Returns null if the idempotency key was already used."""
    entry = await engine.xp.admin_adjust(body.user_id, body.delta, body.description, body.idempotency_key)
    return _entry_response(entry) if entry is not None else None
