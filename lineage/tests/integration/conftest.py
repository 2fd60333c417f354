from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from lineage.apps.api.main import create_app


@pytest.fixture
async def app(session_factory):
    app = create_app(session_factory=session_factory)
    yield app
    await app.state.gateway.shutdown()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
