from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import User
from lineage.persistence.db import insert_ignoring_conflicts


async def ensure_user_exists(session: AsyncSession, *, user_id: str, email: str | None) -> bool:
    # Create a profile stub without touching existing profiles; True when a row was inserted.
    stmt = insert_ignoring_conflicts(session, User.__table__, index_elements=["id"]).values(
        id=user_id, email=email
    )
    result = await session.execute(stmt)
    return bool(result.rowcount)
