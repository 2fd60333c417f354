from __future__ import annotations

import pytest

from lineage.core.config import get_settings
from lineage.domain.models import Base
from lineage.persistence.db import build_engine, build_session_factory
from lineage.services.audit import AuditSink
from lineage.services.background import BackgroundTasks


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Clear settings caches around each test so monkeypatched env never leaks.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine(tmp_path):
    # One file-backed SQLite database per test; a file (not :memory:) lets concurrent sessions share it.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'lineage.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def tasks(engine):
    # Depends on engine so outstanding writes finish before the database is disposed.
    runner = BackgroundTasks()
    yield runner
    await runner.drain(timeout=5)


@pytest.fixture
def audit(session_factory) -> AuditSink:
    return AuditSink(session_factory)
