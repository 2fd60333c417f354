from __future__ import annotations

import pytest

from lineage.tests.utils.auth import dev_headers
from lineage.tests.utils.seed import read_audit_events, read_membership_roles, seed_membership, seed_tree
from lineage.tests.utils.settings import apply_env


@pytest.fixture(autouse=True)
def _dev_bypass(monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")


@pytest.mark.asyncio
async def test_owner_manages_members(session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    owner = dev_headers("owner-1")

    created = await client.post(
        f"/v1/trees/{tree_id}/members",
        json={"user_id": "cousin", "role": "viewer", "email": "cousin@example.com"},
        headers=owner,
    )
    assert created.status_code == 201
    assert created.json()["data"]["role"] == "viewer"

    repeated = await client.post(
        f"/v1/trees/{tree_id}/members", json={"user_id": "cousin", "role": "editor"}, headers=owner
    )
    assert repeated.status_code == 200
    assert repeated.json()["data"]["role"] == "viewer"

    listed = await client.get(f"/v1/trees/{tree_id}/members", headers=owner)
    assert listed.status_code == 200
    assert [(m["user_id"], m["role"]) for m in listed.json()["data"]] == [("owner-1", "owner"), ("cousin", "viewer")]

    patched = await client.patch(f"/v1/trees/{tree_id}/members/cousin", json={"role": "editor"}, headers=owner)
    assert patched.status_code == 200
    assert patched.json()["data"]["role"] == "editor"

    removed = await client.delete(f"/v1/trees/{tree_id}/members/cousin", headers=owner)
    assert removed.status_code == 204
    assert await read_membership_roles(session_factory, tree_id=tree_id, user_id="cousin") == []


@pytest.mark.asyncio
async def test_viewers_can_list_but_not_mutate(session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="viewer-1", role="viewer")
    viewer = dev_headers("viewer-1")

    listed = await client.get(f"/v1/trees/{tree_id}/members", headers=viewer)
    assert listed.status_code == 200

    granted = await client.post(f"/v1/trees/{tree_id}/members", json={"user_id": "x"}, headers=viewer)
    assert granted.status_code == 403
    assert granted.json()["error"]["details"] == {"required": "owner", "current": "viewer"}


@pytest.mark.asyncio
async def test_member_management_guards(session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    owner = dev_headers("owner-1")

    promote = await client.post(
        f"/v1/trees/{tree_id}/members", json={"user_id": "x", "role": "owner"}, headers=owner
    )
    assert promote.status_code == 400
    assert promote.json()["error"]["code"] == "INVALID_ROLE"

    leave = await client.delete(f"/v1/trees/{tree_id}/members/owner-1", headers=owner)
    assert leave.status_code == 400
    assert leave.json()["error"]["message"] == "Owners cannot remove their own membership"

    ghost = await client.patch(f"/v1/trees/{tree_id}/members/ghost", json={"role": "viewer"}, headers=owner)
    assert ghost.status_code == 404


@pytest.mark.asyncio
async def test_member_changes_are_audited_with_request_id(app, session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="editor-1", role="editor")
    owner = dev_headers("owner-1")

    patched = await client.patch(
        f"/v1/trees/{tree_id}/members/editor-1",
        json={"role": "viewer"},
        headers={**owner, "X-Request-Id": "req-members-1"},
    )
    removed = await client.delete(
        f"/v1/trees/{tree_id}/members/editor-1", headers={**owner, "X-Request-Id": "req-members-2"}
    )

    assert patched.status_code == 200
    assert removed.status_code == 204
    await app.state.gateway.tasks.drain()
    changed = await read_audit_events(session_factory, event_type="members.role_changed")
    dropped = await read_audit_events(session_factory, event_type="members.removed")
    assert [event.request_id for event in changed] == ["req-members-1"]
    assert [event.request_id for event in dropped] == ["req-members-2"]
