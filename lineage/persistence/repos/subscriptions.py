from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import Subscription


ACTIVE_STATUSES = ("active", "trialing")


async def get_active_subscription(session: AsyncSession, *, user_id: str) -> Subscription | None:
    # Prefer the most recently updated active subscription when several exist.
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status.in_(ACTIVE_STATUSES))
        .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
