from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import Tree, TreeMember


async def get_tree_owner_id(session: AsyncSession, *, tree_id: str) -> str | None:
    # Read only the owner column; the authorizer never needs the full row.
    result = await session.execute(select(Tree.owner_id).where(Tree.id == tree_id))
    return result.scalar_one_or_none()


async def list_trees_missing_owner_membership(session: AsyncSession, *, limit: int = 500) -> list[Tree]:
    # Find trees whose recorded owner has no membership row (legacy inconsistency).
    stmt = (
        select(Tree)
        .outerjoin(
            TreeMember,
            (TreeMember.tree_id == Tree.id) & (TreeMember.user_id == Tree.owner_id),
        )
        .where(TreeMember.id.is_(None))
        .order_by(Tree.id.asc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
