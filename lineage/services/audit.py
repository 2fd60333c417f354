from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from lineage.domain.models import AuditEvent, TokenUsageLog
from lineage.persistence.db import SessionFactory


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "code", "email"]
_REDACTED_VALUE = "[REDACTED]"


@dataclass(frozen=True)
class UsageLogEntry:
    # Immutable spend record appended after a committed deduction or grant.
    user_id: str
    cost: int
    action: str
    occurred_at: datetime
    feature_name: str = "api_usage"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


class AuditSink:
    """Append-only writer for audit events and token usage logs.

    Every write opens its own session and swallows datastore failures after
    logging them, so callers can dispatch writes as detached tasks.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def record_event(
        self,
        *,
        event_type: str,
        outcome: str,
        actor_id: str | None,
        tree_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        error_code: str | None = None,
        occurred_at: datetime | None = None,
    ) -> bool:
        event = AuditEvent(
            occurred_at=occurred_at or datetime.now(timezone.utc),
            actor_id=actor_id,
            tree_id=tree_id,
            event_type=event_type,
            outcome=outcome,
            resource_type=resource_type,
            resource_id=resource_id,
            request_id=request_id,
            metadata_json=sanitize_metadata(metadata or {}),
            error_code=error_code,
        )
        async with self._session_factory() as session:
            try:
                session.add(event)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "audit_event_write_failed event_type=%s request_id=%s",
                    event_type,
                    request_id,
                    exc_info=exc,
                )
                return False
        return True

    async def append_usage(self, entry: UsageLogEntry) -> bool:
        row = TokenUsageLog(
            user_id=entry.user_id,
            amount=entry.cost,
            action=entry.action,
            feature_name=entry.feature_name,
            created_at=entry.occurred_at,
        )
        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "usage_log_write_failed user_id=%s action=%s",
                    entry.user_id,
                    entry.action,
                    exc_info=exc,
                )
                return False
        return True
