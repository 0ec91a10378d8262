"""Quest endpoints: listing with progress, claiming, history and admin management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import Quest, QuestProgress, User
from questboard.dependencies import get_engine
from questboard.engine import GamificationEngine
from questboard.quests.rules import progress_state, rule_target
from questboard.quests.schemas import (
    AdminForceCompleteRequest,
    AdminQuestCreate,
    AdminQuestUpdate,
    ClaimRequest,
    ClaimResponse,
    QuestHistoryEntry,
    QuestHistoryResponse,
    QuestListResponse,
    QuestProgressResponse,
    QuestResponse,
    QuestWithProgressResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Quests"])


def _quest_response(quest: Quest) -> QuestResponse:
    return QuestResponse(
        id=quest.id,
        name=quest.name,
        description=quest.description,
        cadence=quest.cadence,
        rule=quest.rule or {},
        reward_xp=quest.reward_xp,
        start_at=quest.start_at,
        end_at=quest.end_at,
        is_active=quest.is_active,
        display_order=quest.display_order,
        metadata=quest.quest_metadata or {},
    )


def _progress_response(progress: QuestProgress, target: int) -> QuestProgressResponse:
    return QuestProgressResponse(
        period_key=progress.period_key,
        period_start=progress.period_start,
        period_end=progress.period_end,
        progress_value=progress.progress_value,
        target=target,
        state=progress_state(progress.progress_value, progress.is_completed, progress.is_claimed),
        is_completed=progress.is_completed,
        completed_at=progress.completed_at,
        is_claimed=progress.is_claimed,
        claimed_at=progress.claimed_at,
    )


async def _list(engine: GamificationEngine, user_id: int, cadence: str | None) -> QuestListResponse:
    items = await engine.get_quests_with_progress(user_id, cadence)
    return QuestListResponse(
        quests=[
            QuestWithProgressResponse(
                quest=_quest_response(item["quest"]),
                progress=_progress_response(item["progress"], item["target"]),
            )
            for item in items
        ]
    )


@router.get("/quests", response_model=QuestListResponse)
async def list_quests(
    cadence: str | None = Query(None),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get all active quests with the current user's progress."""
    return await _list(engine, user.id, cadence)


@router.get("/quests/today", response_model=QuestListResponse)
async def list_today_quests(
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get today's daily quests with the current user's progress."""
    return await _list(engine, user.id, "daily")


@router.post("/quests/claim", response_model=ClaimResponse)
async def claim_quest(
    body: ClaimRequest,
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Claim a completed quest's XP reward."""
    result = await engine.claim_quest_reward(user.id, body.quest_id)
    if not result["success"]:
        return JSONResponse(
            status_code=result["status_code"],
            content=ClaimResponse(
                success=False,
                quest_id=body.quest_id,
                message=result["message"],
                error_code=result["error_code"],
            ).model_dump(),
        )
    return ClaimResponse(
        success=True,
        quest_id=body.quest_id,
        xp_awarded=result["xp_awarded"],
        message=result["message"],
    )


@router.get("/quests/history", response_model=QuestHistoryResponse)
async def quest_history(
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's claimed quests, most recent first."""
    rows, total = await engine.quests.get_history(user.id, limit=limit, skip=skip)
    return QuestHistoryResponse(
        history=[
            QuestHistoryEntry(
                quest=_quest_response(row.quest),
                period_key=row.period_key,
                progress_value=row.progress_value,
                completed_at=row.completed_at,
                claimed_at=row.claimed_at,
            )
            for row in rows
        ],
        total=total,
        limit=limit,
        skip=skip,
    )


# ── Admin ──


@router.post("/admin/quests", response_model=QuestResponse, status_code=201)
async def create_quest(
    body: AdminQuestCreate,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Create a quest definition (admin)."""
    data = body.model_dump(exclude={"metadata"})
    data["quest_metadata"] = body.metadata
    quest = await engine.quests.create_quest(data)
    return _quest_response(quest)


@router.put("/admin/quests/{quest_id}", response_model=QuestResponse)
async def update_quest(
    quest_id: int,
    body: AdminQuestUpdate,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Edit a quest definition (admin). Existing progress is left as is."""
    changes = body.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["quest_metadata"] = changes.pop("metadata") or {}
    quest = await engine.quests.update_quest(quest_id, changes)
    return _quest_response(quest)


@router.post("/admin/quests/{quest_id}/complete", response_model=QuestProgressResponse)
async def force_complete_quest(
    quest_id: int,
    body: AdminForceCompleteRequest,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Mark a user's current period of a quest complete (admin)."""
    progress = await engine.quests.force_complete(body.user_id, quest_id)
    return _progress_response(progress, rule_target(progress.quest.rule or {}))
