"""Pydantic models for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserResponse(BaseModel):
    id: int
    wallet_address: str
    referral_code: str
    is_active: bool
    is_admin: bool
    created_at: datetime


class UserStatusRequest(BaseModel):
    is_active: bool
