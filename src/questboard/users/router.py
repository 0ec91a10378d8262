"""User profile and admin account-status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.auth.dependencies import get_current_user, require_admin
from questboard.db.models import User
from questboard.dependencies import get_db
from questboard.users.schemas import UserResponse, UserStatusRequest
from questboard.users.service import set_user_active

router = APIRouter(prefix="/api/v1", tags=["Users"])


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        wallet_address=user.wallet_address,
        referral_code=user.referral_code,
        is_active=user.is_active,
        is_admin=user.is_admin,
        created_at=user.created_at,
    )


@router.get("/users/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Get the current user's profile, including their referral code."""
    return _user_response(user)


@router.put("/admin/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    body: UserStatusRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable an account (admin)."""
    user = await set_user_active(db, user_id, body.is_active)
    await db.commit()
    return _user_response(user)
