"""Pydantic request/response models for referral endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TrackReferralRequest(BaseModel):
    referral_code: str = Field(min_length=1, max_length=32)
    metadata: dict = {}


class ReferralResponse(BaseModel):
    id: int
    inviter_user_id: int
    invitee_user_id: int
    referral_code_used: str
    status: str
    metadata: dict = {}
    created_at: datetime
    verified_at: datetime | None = None
    rewarded_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None


class TrackReferralResponse(BaseModel):
    success: bool
    message: str
    referral: ReferralResponse | None = None
    error_code: str | None = None


class VerifyCodeResponse(BaseModel):
    valid: bool
    referral_code: str
    referral_count: int


class ReferralStatsResponse(BaseModel):
    referral_code: str
    total: int
    pending: int
    verified: int
    rewarded: int
    rejected: int
    xp_earned: int
    referred_by_user_id: int | None = None


class ReferralHistoryResponse(BaseModel):
    referrals: list[ReferralResponse]
    total: int
    limit: int
    skip: int


class AdminReferralOverrideRequest(BaseModel):
    action: str
    reason: str | None = Field(default=None, max_length=256)
