"""Pydantic request/response models for quest endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class QuestResponse(BaseModel):
    id: int
    name: str
    description: str
    cadence: str
    rule: dict
    reward_xp: int
    start_at: datetime
    end_at: datetime | None = None
    is_active: bool
    display_order: int = 0
    metadata: dict = {}


class QuestProgressResponse(BaseModel):
    period_key: str
    period_start: datetime | None = None
    period_end: datetime | None = None
    progress_value: int
    target: int
    state: str
    is_completed: bool
    completed_at: datetime | None = None
    is_claimed: bool
    claimed_at: datetime | None = None


class QuestWithProgressResponse(BaseModel):
    quest: QuestResponse
    progress: QuestProgressResponse


class QuestListResponse(BaseModel):
    quests: list[QuestWithProgressResponse]


class ClaimRequest(BaseModel):
    quest_id: int


class ClaimResponse(BaseModel):
    success: bool
    quest_id: int | None = None
    xp_awarded: int | None = None
    message: str
    error_code: str | None = None


class QuestHistoryEntry(BaseModel):
    quest: QuestResponse
    period_key: str
    progress_value: int
    completed_at: datetime | None = None
    claimed_at: datetime | None = None


class QuestHistoryResponse(BaseModel):
    history: list[QuestHistoryEntry]
    total: int
    limit: int
    skip: int


class AdminQuestCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = ""
    cadence: str = "daily"
    rule: dict
    reward_xp: int = Field(ge=0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    is_active: bool = True
    display_order: int = 0
    metadata: dict = {}


class AdminQuestUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    cadence: str | None = None
    rule: dict | None = None
    reward_xp: int | None = Field(default=None, ge=0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    is_active: bool | None = None
    display_order: int | None = None
    metadata: dict | None = None


class AdminForceCompleteRequest(BaseModel):
    user_id: int
