"""Event submission endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import Event, User
from questboard.dependencies import get_engine
from questboard.engine import GamificationEngine
from questboard.events.schemas import (
    AdminEventStatusRequest,
    EventListResponse,
    EventResponse,
    EventResultResponse,
    SubmitEventRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Events"])


def _event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        type=event.type,
        status=event.status,
        dedup_key=event.dedup_key,
        metadata=event.event_metadata or {},
        occurred_at=event.occurred_at,
        processed_at=event.processed_at,
        error_message=event.error_message,
    )


@router.post("/events", response_model=EventResultResponse)
async def submit_event(
    body: SubmitEventRequest,
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Record an activity and award XP. Duplicates and cooldowns return awarded=false."""
    result = await engine.submit_event(user.id, body.type, body.metadata, body.dedup_key)
    return EventResultResponse(
        awarded=result.awarded,
        xp_awarded=result.xp_awarded,
        next_available_at=result.next_available_at,
        event_id=result.event_id,
        message=result.message,
        duplicate=result.duplicate,
    )


@router.get("/events/me", response_model=EventListResponse)
async def list_my_events(
    type: str | None = Query(None),
    status: str | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    engine: GamificationEngine = Depends(get_engine),
):
    """Get the current user's events, newest first."""
    events, total = await engine.events.list_user_events(
        user.id, event_type=type, status=status, start=start, end=end, limit=limit, skip=skip
    )
    return EventListResponse(
        events=[_event_response(e) for e in events],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.post("/admin/events/{event_id}/status", response_model=EventResponse)
async def override_event_status(
    event_id: int,
    body: AdminEventStatusRequest,
    _admin: User = Depends(require_admin),
    engine: GamificationEngine = Depends(get_engine),
):
    """Corrective status override (admin)."""
    event = await engine.events.admin_set_status(event_id, body.status, body.reason)
    return _event_response(event)
