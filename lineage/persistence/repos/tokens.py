from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import TokenBalance
from lineage.persistence.db import insert_ignoring_conflicts


async def get_balance(session: AsyncSession, *, user_id: str) -> TokenBalance | None:
    # Plain read; every mutation below re-checks its precondition in the UPDATE itself.
    result = await session.execute(
        select(TokenBalance)
        .where(TokenBalance.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert_balance_if_absent(
    session: AsyncSession,
    *,
    user_id: str,
    balance: int,
    now: datetime,
) -> bool:
    # Lazily create the ledger row; a concurrent creator wins without error.
    stmt = insert_ignoring_conflicts(
        session, TokenBalance.__table__, index_elements=["user_id"]
    ).values(user_id=user_id, balance=balance, last_refill_at=now, updated_at=now)
    result = await session.execute(stmt)
    return bool(result.rowcount)


async def reset_balance_if_stale(
    session: AsyncSession,
    *,
    user_id: str,
    quota: int,
    now: datetime,
    cutoff: datetime,
) -> bool:
    # Refill is a reset guarded by the staleness check so only one racer applies it.
    result = await session.execute(
        update(TokenBalance)
        .where(TokenBalance.user_id == user_id, TokenBalance.last_refill_at < cutoff)
        .values(balance=quota, last_refill_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def deduct_if_sufficient(
    session: AsyncSession,
    *,
    user_id: str,
    cost: int,
    now: datetime,
) -> int | None:
    # Decrement-with-floor in one statement; None means the balance no longer covers the cost.
    result = await session.execute(
        update(TokenBalance)
        .where(TokenBalance.user_id == user_id, TokenBalance.balance >= cost)
        .values(balance=TokenBalance.balance - cost, updated_at=now)
        .returning(TokenBalance.balance)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def add_tokens(
    session: AsyncSession,
    *,
    user_id: str,
    amount: int,
    now: datetime,
) -> int | None:
    result = await session.execute(
        update(TokenBalance)
        .where(TokenBalance.user_id == user_id)
        .values(balance=TokenBalance.balance + amount, updated_at=now)
        .returning(TokenBalance.balance)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def set_balance(
    session: AsyncSession,
    *,
    user_id: str,
    balance: int,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(TokenBalance)
        .where(TokenBalance.user_id == user_id)
        .values(balance=balance, last_refill_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
