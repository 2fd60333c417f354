from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import TokenUsageLog


async def list_usage_logs(
    session: AsyncSession,
    *,
    user_id: str,
    offset: int = 0,
    limit: int = 50,
) -> list[TokenUsageLog]:
    # Newest first for the account usage history view.
    result = await session.execute(
        select(TokenUsageLog)
        .where(TokenUsageLog.user_id == user_id)
        .order_by(TokenUsageLog.created_at.desc(), TokenUsageLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())
