"""Pydantic response models for XP endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class XPSummaryResponse(BaseModel):
    total_xp: int
    level: int
    level_title: str
    xp_into_level: int
    xp_for_level: int
    next_level: int
    next_title: str
    entry_count: int
    by_reason: dict[str, int] = {}


class LedgerEntryResponse(BaseModel):
    id: int
    delta_xp: int
    reason: str
    description: str | None = None
    related_event_id: int | None = None
    created_at: datetime


class LedgerResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    limit: int
    skip: int


class XPRuleResponse(BaseModel):
    event_type: str
    xp_amount: int
    window: str | None = None
    max_awards: int | None = None
    description: str | None = None
    is_active: bool


class XPRulesResponse(BaseModel):
    rules: list[XPRuleResponse]


class LevelEntry(BaseModel):
    level: int
    title: str
    xp_required: int
    cumulative: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


class AdminXPAdjustRequest(BaseModel):
    user_id: int
    delta: int
    description: str = Field(min_length=1, max_length=256)
    idempotency_key: str | None = Field(default=None, max_length=256)
