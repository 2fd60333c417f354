from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lineage.domain.models import AuditEvent
from lineage.persistence.db import build_engine, build_session_factory
from lineage.services.audit import AuditSink, UsageLogEntry, sanitize_metadata
from lineage.tests.utils.seed import count_rows, read_audit_events, read_usage_logs


def test_sanitize_metadata_redacts_nested_secrets() -> None:
    payload = {
        "Authorization": "Bearer abc",
        "coupon_code": "FAMILY",
        "nested": {"refresh_token": "r", "role": "owner"},
        "items": [{"email": "a@example.com", "required": 10}],
    }

    assert sanitize_metadata(payload) == {
        "Authorization": "[REDACTED]",
        "coupon_code": "[REDACTED]",
        "nested": {"refresh_token": "[REDACTED]", "role": "owner"},
        "items": [{"email": "[REDACTED]", "required": 10}],
    }


@pytest.mark.asyncio
async def test_record_event_persists_sanitized_row(session_factory, audit) -> None:
    assert await audit.record_event(
        event_type="quota.granted",
        outcome="success",
        actor_id="u1",
        resource_type="token_balance",
        resource_id="u1",
        request_id="req-1",
        metadata={"amount": 1000, "code": "SECRET"},
    )

    events = await read_audit_events(session_factory, event_type="quota.granted")
    assert len(events) == 1
    assert events[0].request_id == "req-1"
    assert events[0].metadata_json == {"amount": 1000, "code": "[REDACTED]"}


@pytest.mark.asyncio
async def test_append_usage_persists_entry(session_factory, audit) -> None:
    entry = UsageLogEntry(
        user_id="u1",
        cost=3,
        action="ai_bio",
        occurred_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
    )

    assert await audit.append_usage(entry) is True
    logs = await read_usage_logs(session_factory, user_id="u1")
    assert [(log.amount, log.action) for log in logs] == [(3, "ai_bio")]


@pytest.mark.asyncio
async def test_sink_failures_return_false(tmp_path, session_factory) -> None:
    broken = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'absent' / 'audit.db'}")
    try:
        sink = AuditSink(build_session_factory(broken))
        assert await sink.record_event(event_type="authz.tree.forbidden", outcome="failure", actor_id="u1") is False
        entry = UsageLogEntry(user_id="u1", cost=1, action="x", occurred_at=datetime.now(timezone.utc))
        assert await sink.append_usage(entry) is False
    finally:
        await broken.dispose()
    assert await count_rows(session_factory, AuditEvent) == 0
