"""User lookup and first-sight creation by wallet address."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.models import User
from questboard.db.upsert import dialect_insert
from questboard.errors import NotFoundError
from questboard.referrals.codes import generate_unique_referral_code

logger = structlog.get_logger()


def normalize_wallet_address(wallet_address: str) -> str:
    """EVM addresses are case-insensitive; store them lowercased."""
    return wallet_address.strip().lower()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    return await db.get(User, user_id)


async def get_user_by_address(db: AsyncSession, wallet_address: str) -> User | None:
    result = await db.execute(
        select(User).where(User.wallet_address == normalize_wallet_address(wallet_address))
    )
    return result.scalar_one_or_none()


async def get_or_create_user(
    db: AsyncSession,
    wallet_address: str,
    admin_addresses: Iterable[str] = (),
) -> tuple[User, bool]:
    """
    Get existing user or create a new one with a fresh referral code.

    Concurrent first requests for one wallet race on the unique address;
    the loser re-reads the winner's row.

    Returns:
        Tuple of (user, created) where created is True if a new user was made.
    """
    address = normalize_wallet_address(wallet_address)
    user = await get_user_by_address(db, address)
    if user is not None:
        return user, False

    is_admin = address in {normalize_wallet_address(a) for a in admin_addresses}
    result = await db.execute(
        dialect_insert(db, User)
        .values(
            wallet_address=address,
            referral_code=await generate_unique_referral_code(db),
            is_active=True,
            is_admin=is_admin,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["wallet_address"])
    )
    user = await get_user_by_address(db, address)
    if user is None:
        raise RuntimeError(f"User row for {address} vanished after insert")
    created = bool(result.rowcount)
    if created:
        logger.info("user_created", user_id=user.id, wallet_address=address, is_admin=is_admin)
    return user, created


async def set_user_active(db: AsyncSession, user_id: int, is_active: bool) -> User:
    """Enable or disable a user. Disabled users drop out of new leaderboard snapshots."""
    result = await db.execute(
        update(User).where(User.id == user_id).values(is_active=is_active).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    user = await db.scalar(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    logger.warning("user_active_changed", user_id=user_id, is_active=is_active)
    return user
