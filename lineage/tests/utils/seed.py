from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import func, select

from lineage.domain.models import (
    AuditEvent,
    Document,
    Person,
    Photo,
    Story,
    Subscription,
    TokenBalance,
    TokenUsageLog,
    Tree,
    TreeMember,
    User,
)
from lineage.persistence.db import SessionFactory


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


async def seed_user(session_factory: SessionFactory, *, user_id: str | None = None, email: str | None = None) -> str:
    user_id = user_id or new_id("user")
    async with session_factory() as session:
        session.add(User(id=user_id, email=email))
        await session.commit()
    return user_id


async def seed_tree(
    session_factory: SessionFactory,
    *,
    owner_id: str,
    tree_id: str | None = None,
    with_owner_membership: bool = True,
) -> str:
    # with_owner_membership=False reproduces the legacy trees that lack the owner row.
    tree_id = tree_id or new_id("tree")
    async with session_factory() as session:
        if await session.get(User, owner_id) is None:
            session.add(User(id=owner_id))
        session.add(Tree(id=tree_id, name=f"Family {tree_id}", owner_id=owner_id))
        await session.flush()
        if with_owner_membership:
            session.add(TreeMember(tree_id=tree_id, user_id=owner_id, role="owner"))
        await session.commit()
    return tree_id


async def seed_membership(session_factory: SessionFactory, *, tree_id: str, user_id: str, role: str) -> None:
    async with session_factory() as session:
        if await session.get(User, user_id) is None:
            session.add(User(id=user_id))
            await session.flush()
        session.add(TreeMember(tree_id=tree_id, user_id=user_id, role=role))
        await session.commit()


async def seed_person(session_factory: SessionFactory, *, tree_id: str) -> str:
    person_id = new_id("person")
    async with session_factory() as session:
        session.add(Person(id=person_id, tree_id=tree_id, first_name="Ada", last_name="Lovelace"))
        await session.commit()
    return person_id


async def seed_photo(session_factory: SessionFactory, *, person_id: str) -> str:
    photo_id = new_id("photo")
    async with session_factory() as session:
        session.add(Photo(id=photo_id, person_id=person_id, url=f"https://cdn.example/{photo_id}.jpg"))
        await session.commit()
    return photo_id


async def seed_document(session_factory: SessionFactory, *, person_id: str) -> str:
    document_id = new_id("doc")
    async with session_factory() as session:
        session.add(Document(id=document_id, person_id=person_id, title="Census", url="https://cdn.example/c.pdf"))
        await session.commit()
    return document_id


async def seed_story(session_factory: SessionFactory, *, tree_id: str) -> str:
    story_id = new_id("story")
    async with session_factory() as session:
        session.add(Story(id=story_id, tree_id=tree_id, title="Crossing"))
        await session.commit()
    return story_id


async def seed_balance(
    session_factory: SessionFactory,
    *,
    user_id: str,
    balance: int,
    last_refill_at: datetime | None = None,
) -> None:
    now = _utc_now()
    async with session_factory() as session:
        session.add(
            TokenBalance(
                user_id=user_id,
                balance=balance,
                last_refill_at=last_refill_at or now,
                updated_at=now,
            )
        )
        await session.commit()


async def seed_subscription(
    session_factory: SessionFactory,
    *,
    user_id: str,
    plan_id: str,
    status: str = "active",
    updated_at: datetime | None = None,
) -> str:
    subscription_id = new_id("sub")
    async with session_factory() as session:
        session.add(
            Subscription(
                id=subscription_id,
                user_id=user_id,
                plan_id=plan_id,
                status=status,
                updated_at=updated_at or _utc_now(),
            )
        )
        await session.commit()
    return subscription_id


async def read_balance(session_factory: SessionFactory, user_id: str) -> TokenBalance | None:
    async with session_factory() as session:
        return await session.get(TokenBalance, user_id)


async def read_membership_roles(session_factory: SessionFactory, *, tree_id: str, user_id: str) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(TreeMember.role).where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
        )
        return list(result.scalars().all())


async def read_audit_events(session_factory: SessionFactory, *, event_type: str) -> list[AuditEvent]:
    async with session_factory() as session:
        result = await session.execute(
            select(AuditEvent).where(AuditEvent.event_type == event_type).order_by(AuditEvent.id.asc())
        )
        return list(result.scalars().all())


async def read_usage_logs(session_factory: SessionFactory, *, user_id: str) -> list[TokenUsageLog]:
    async with session_factory() as session:
        result = await session.execute(
            select(TokenUsageLog).where(TokenUsageLog.user_id == user_id).order_by(TokenUsageLog.id.asc())
        )
        return list(result.scalars().all())


async def count_rows(session_factory: SessionFactory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return int(result.scalar_one())
