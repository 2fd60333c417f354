from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health_is_public_and_enveloped(client) -> None:
    response = await client.get("/v1/health", headers={"X-Request-Id": "req-health"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok"}
    assert body["meta"] == {"request_id": "req-health", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-health"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client) -> None:
    response = await client.get("/v1/nope")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"
