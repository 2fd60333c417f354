from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lineage.core.errors import EntityNotFoundError, MissingIdentifierError, QuotaExceededError, TreeForbiddenError
from lineage.services.authz.resolver import ENTITY_PHOTO
from lineage.services.authz.roles import ROLE_EDITOR, ROLE_VIEWER
from lineage.services.gateway import AccessGateway, Target
from lineage.tests.utils.seed import (
    read_balance,
    seed_balance,
    seed_membership,
    seed_person,
    seed_photo,
    seed_tree,
)


@pytest.fixture
async def gateway(session_factory, tasks, audit):
    gateway = AccessGateway(session_factory=session_factory, tasks=tasks, audit=audit)
    yield gateway
    await gateway.shutdown()


@pytest.mark.asyncio
async def test_unmetered_check_reports_role_only(session_factory, gateway) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")

    result = await gateway.check(user_id="owner-1", target=Target.tree(tree_id), required_role=ROLE_EDITOR)

    assert result.tree_id == tree_id
    assert result.effective_role == "owner"
    assert result.remaining_balance is None
    assert await read_balance(session_factory, "owner-1") is None


@pytest.mark.asyncio
async def test_metered_entity_check_resolves_authorizes_and_deducts(session_factory, gateway) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="editor-1", role=ROLE_EDITOR)
    person_id = await seed_person(session_factory, tree_id=tree_id)
    photo_id = await seed_photo(session_factory, person_id=person_id)
    await seed_balance(session_factory, user_id="editor-1", balance=30, last_refill_at=datetime.now(timezone.utc))

    result = await gateway.check(
        user_id="editor-1",
        target=Target.entity(ENTITY_PHOTO, photo_id),
        required_role=ROLE_EDITOR,
        cost=5,
        action="photo_enhance",
    )

    assert result.tree_id == tree_id
    assert result.effective_role == ROLE_EDITOR
    assert result.remaining_balance == 25


@pytest.mark.asyncio
async def test_role_denial_short_circuits_metering(session_factory, gateway) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="viewer-1", role=ROLE_VIEWER)
    await seed_balance(session_factory, user_id="viewer-1", balance=30, last_refill_at=datetime.now(timezone.utc))

    with pytest.raises(TreeForbiddenError):
        await gateway.check(
            user_id="viewer-1", target=Target.tree(tree_id), required_role=ROLE_EDITOR, cost=5
        )

    assert (await read_balance(session_factory, "viewer-1")).balance == 30


@pytest.mark.asyncio
async def test_not_found_and_quota_denials(session_factory, gateway) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_balance(session_factory, user_id="owner-1", balance=2, last_refill_at=datetime.now(timezone.utc))

    with pytest.raises(EntityNotFoundError):
        await gateway.check(
            user_id="owner-1", target=Target.entity(ENTITY_PHOTO, "photo-gone"), required_role=ROLE_VIEWER
        )
    with pytest.raises(QuotaExceededError):
        await gateway.check(user_id="owner-1", target=Target.tree(tree_id), required_role=ROLE_VIEWER, cost=3)
    with pytest.raises(MissingIdentifierError):
        await gateway.check(user_id="owner-1", target=Target(), required_role=ROLE_VIEWER)
