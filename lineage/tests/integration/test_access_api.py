from __future__ import annotations

import pytest

from lineage.tests.utils.settings import apply_env
from lineage.tests.utils.auth import bearer_headers, dev_headers
from lineage.tests.utils.seed import (
    read_audit_events,
    read_membership_roles,
    seed_membership,
    seed_person,
    seed_photo,
    seed_tree,
)


@pytest.mark.asyncio
async def test_missing_credentials_are_rejected(session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")

    response = await client.get(f"/v1/trees/{tree_id}/access")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    body = response.json()
    assert body["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert body["meta"]["api_version"] == "v1"


@pytest.mark.asyncio
async def test_bearer_token_grants_access(session_factory, client) -> None:
    tree_id = await seed_tree(session_factory, owner_id="owner-1")

    response = await client.get(
        f"/v1/trees/{tree_id}/access",
        params={"required_role": "owner"},
        headers=bearer_headers("owner-1"),
    )

    assert response.status_code == 200
    assert response.json()["data"] == {
        "tree_id": tree_id,
        "required_role": "owner",
        "effective_role": "owner",
        "source": "membership",
    }


@pytest.mark.asyncio
async def test_invalid_bearer_token(client) -> None:
    response = await client.get("/v1/trees/t-1/access", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid token"


@pytest.mark.asyncio
async def test_insufficient_role_returns_structured_403(session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="viewer-1", role="viewer")

    response = await client.get(
        f"/v1/trees/{tree_id}/access",
        params={"required_role": "editor"},
        headers=dev_headers("viewer-1"),
    )

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "TREE_FORBIDDEN"
    assert error["message"] == "This action requires editor role. You have viewer role."
    assert error["details"] == {"required": "editor", "current": "viewer"}


@pytest.mark.asyncio
async def test_stranger_gets_no_access(session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1")

    response = await client.get(f"/v1/trees/{tree_id}/access", headers=dev_headers("stranger"))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "You do not have access to this tree"


@pytest.mark.asyncio
async def test_owner_fallback_heals_membership(app, session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1", with_owner_membership=False)

    response = await client.get(
        f"/v1/trees/{tree_id}/access",
        params={"required_role": "editor"},
        headers=dev_headers("owner-1", email="owner@example.com"),
    )

    assert response.status_code == 200
    assert response.json()["data"]["source"] == "owner_fallback"
    await app.state.gateway.tasks.drain()
    assert await read_membership_roles(session_factory, tree_id=tree_id, user_id="owner-1") == ["owner"]


@pytest.mark.asyncio
async def test_entity_access_resolves_owning_tree(session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    await seed_membership(session_factory, tree_id=tree_id, user_id="editor-1", role="editor")
    person_id = await seed_person(session_factory, tree_id=tree_id)
    photo_id = await seed_photo(session_factory, person_id=person_id)

    response = await client.get(f"/v1/entities/photo/{photo_id}/access", headers=dev_headers("editor-1"))

    assert response.status_code == 200
    assert response.json()["data"]["tree_id"] == tree_id
    assert response.json()["data"]["effective_role"] == "editor"


@pytest.mark.asyncio
async def test_entity_errors_map_to_status_codes(client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    headers = dev_headers("user-1")

    missing = await client.get("/v1/entities/photo/photo-gone/access", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    unsupported = await client.get("/v1/entities/recipe/r-1/access", headers=headers)
    assert unsupported.status_code == 400
    assert unsupported.json()["error"]["code"] == "UNSUPPORTED_ENTITY_KIND"

    bad_role = await client.get("/v1/trees/t-1/access", params={"required_role": "admin"}, headers=headers)
    assert bad_role.status_code == 400
    assert bad_role.json()["error"]["code"] == "INVALID_ROLE"


@pytest.mark.asyncio
async def test_missing_tree_is_denied_alike_on_both_routes(client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    headers = dev_headers("stranger")

    by_id = await client.get("/v1/trees/no-such-tree/access", headers=headers)
    by_entity = await client.get("/v1/entities/tree/no-such-tree/access", headers=headers)

    assert by_id.status_code == by_entity.status_code == 403
    assert by_id.json()["error"] == by_entity.json()["error"]
    assert by_entity.json()["error"]["code"] == "TREE_FORBIDDEN"


@pytest.mark.asyncio
async def test_entity_tree_route_reports_owner_role(session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1")

    response = await client.get(f"/v1/entities/tree/{tree_id}/access", headers=dev_headers("owner-1"))

    assert response.status_code == 200
    assert response.json()["data"]["tree_id"] == tree_id
    assert response.json()["data"]["effective_role"] == "owner"


@pytest.mark.asyncio
async def test_denial_audit_records_request_id(app, session_factory, client, monkeypatch) -> None:
    apply_env(monkeypatch, AUTH_DEV_BYPASS="true")
    tree_id = await seed_tree(session_factory, owner_id="owner-1")
    headers = {**dev_headers("stranger"), "X-Request-Id": "req-access-7"}

    response = await client.get(f"/v1/trees/{tree_id}/access", headers=headers)

    assert response.status_code == 403
    assert response.json()["meta"]["request_id"] == "req-access-7"
    await app.state.gateway.tasks.drain()
    events = await read_audit_events(session_factory, event_type="authz.tree.forbidden")
    assert [event.request_id for event in events] == ["req-access-7"]
