"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    score: int
    wallet_address: str | None = None


class LeaderboardResponse(BaseModel):
    period: str
    snapshot_id: int | None = None
    generated_at: datetime | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    total_users: int
    top_score: int
    average_score: float
    rows: list[LeaderboardEntry]


class UserRankResponse(BaseModel):
    found: bool
    rank: int | None = None
    score: int
    total_users: int
    period: str
    generated_at: datetime | None = None


class SnapshotResponse(BaseModel):
    id: int
    period: str
    status: str
    window_start: datetime
    window_end: datetime
    started_at: datetime
    generated_at: datetime | None = None
    total_users: int
    top_score: int
    average_score: float
    error_message: str | None = None


class SnapshotListResponse(BaseModel):
    snapshots: list[SnapshotResponse]


class GenerateSnapshotRequest(BaseModel):
    period: str = "all-time"
