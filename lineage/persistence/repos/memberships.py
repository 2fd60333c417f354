from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.domain.models import TreeMember
from lineage.persistence.db import insert_ignoring_conflicts


async def get_membership_role(session: AsyncSession, *, tree_id: str, user_id: str) -> str | None:
    # Return the caller's stored role, or None when no membership row exists.
    result = await session.execute(
        select(TreeMember.role).where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_membership(session: AsyncSession, *, tree_id: str, user_id: str) -> TreeMember | None:
    result = await session.execute(
        select(TreeMember).where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def insert_membership_if_absent(
    session: AsyncSession,
    *,
    tree_id: str,
    user_id: str,
    role: str,
) -> bool:
    # Idempotent on (tree_id, user_id); returns False when the row already existed.
    stmt = insert_ignoring_conflicts(
        session, TreeMember.__table__, index_elements=["tree_id", "user_id"]
    ).values(tree_id=tree_id, user_id=user_id, role=role)
    result = await session.execute(stmt)
    return bool(result.rowcount)


async def list_memberships(session: AsyncSession, *, tree_id: str) -> list[TreeMember]:
    result = await session.execute(
        select(TreeMember)
        .where(TreeMember.tree_id == tree_id)
        .order_by(TreeMember.created_at.asc(), TreeMember.id.asc())
    )
    return list(result.scalars().all())


async def update_membership_role(
    session: AsyncSession,
    *,
    tree_id: str,
    user_id: str,
    role: str,
) -> bool:
    result = await session.execute(
        update(TreeMember)
        .where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
        .values(role=role)
    )
    return bool(result.rowcount)


async def delete_membership(session: AsyncSession, *, tree_id: str, user_id: str) -> bool:
    result = await session.execute(
        delete(TreeMember).where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
    )
    return bool(result.rowcount)
