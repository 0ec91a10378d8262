"""Leaderboard endpoints. Reads serve the latest completed snapshot."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import LeaderboardSnapshot, User
from questboard.dependencies import get_engine
from questboard.engine import GamificationEngine
from questboard.leaderboard.schemas import (
    GenerateSnapshotRequest,
    LeaderboardEntry,
    LeaderboardResponse,
    SnapshotListResponse,
    SnapshotResponse,
    UserRankResponse,
)
from questboard.leaderboard.service import validate_period

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


def _snapshot_response(snapshot: LeaderboardSnapshot) -> SnapshotResponse:
    return SnapshotResponse(
        id=snapshot.id,
        period=snapshot.period,
        status=snapshot.status,
        window_start=snapshot.window_start,
        window_end=snapshot.window_end,
        started_at=snapshot.started_at,
        generated_at=snapshot.generated_at,
        total_users=snapshot.total_users,
        top_score=snapshot.top_score,
        average_score=snapshot.average_score,
        error_message=snapshot.error_message,
    )


# ── Public endpoints ──


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: str = Query("all-time"),
    limit: int | None = Query(None, ge=1),
    skip: int = Query(0, ge=0),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get a page of the latest leaderboard for a period."""
    board = await engine.get_leaderboard(period, limit=limit, skip=skip)
    rows = board.pop("rows")
    return LeaderboardResponse(**board, rows=[LeaderboardEntry(**row) for row in rows])


@router.get("/leaderboard/snapshot/latest", response_model=SnapshotResponse)
async def get_latest_snapshot(
    period: str = Query("all-time"),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get metadata of the latest completed snapshot for a period."""
    snapshot = await engine.leaderboard.get_latest(period)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No completed {period} snapshot yet")
    return _snapshot_response(snapshot)


# ── Authenticated endpoints ──


@router.get("/leaderboard/me", response_model=UserRankResponse)
async def get_my_rank(
    period: str = Query("all-time"),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's rank in the latest snapshot."""
    return UserRankResponse(**await engine.get_user_rank(user.id, period))


# ── Admin ──


@router.post("/admin/leaderboard/generate", response_model=SnapshotResponse)
async def generate_snapshot(
    body: GenerateSnapshotRequest,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Generate a snapshot now (admin)."""
    snapshot = await engine.generate_leaderboard(body.period)
    return _snapshot_response(snapshot)


@router.get("/admin/leaderboard/snapshots", response_model=SnapshotListResponse)
async def list_snapshots(
    period: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """List recent snapshots of any status, including failed ones (admin)."""
    if period is not None:
        validate_period(period)
    snapshots = await engine.leaderboard.list_snapshots(period, limit=limit)
    return SnapshotListResponse(snapshots=[_snapshot_response(s) for s in snapshots])
