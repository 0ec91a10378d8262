"""Pydantic request/response models for event endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SubmitEventRequest(BaseModel):
    type: str
    metadata: dict = {}
    dedup_key: str | None = Field(default=None, min_length=1, max_length=256)


class EventResultResponse(BaseModel):
    awarded: bool
    xp_awarded: int = 0
    next_available_at: datetime | None = None
    event_id: int | None = None
    message: str = ""
    duplicate: bool = False


class EventResponse(BaseModel):
    id: int
    type: str
    status: str
    dedup_key: str
    metadata: dict = {}
    occurred_at: datetime
    processed_at: datetime | None = None
    error_message: str | None = None


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    limit: int
    skip: int


class AdminEventStatusRequest(BaseModel):
    status: str
    reason: str | None = Field(default=None, max_length=512)
