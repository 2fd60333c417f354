from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from lineage.core.config import get_settings
from lineage.domain.models import AuditEvent, TokenUsageLog
from lineage.persistence.repos.memberships import insert_membership_if_absent
from lineage.persistence.repos.trees import list_trees_missing_owner_membership
from lineage.persistence.repos.users import ensure_user_exists
from lineage.services.authz.roles import ROLE_OWNER


logger = logging.getLogger(__name__)


async def prune_audit_events(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Remove audit events beyond the retention window.
    settings = get_settings()
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=settings.audit_retention_days)
    result = await session.execute(delete(AuditEvent).where(AuditEvent.occurred_at < cutoff))
    return result.rowcount or 0


async def prune_usage_logs(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Usage logs are append-only; only age removes them.
    settings = get_settings()
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=settings.usage_log_retention_days)
    result = await session.execute(delete(TokenUsageLog).where(TokenUsageLog.created_at < cutoff))
    return result.rowcount or 0


async def backfill_owner_memberships(session: AsyncSession, *, batch_size: int = 500) -> int:
    """Insert the missing owner membership for every tree that lacks one.

    Offline counterpart of the authorizer's self-heal path. Inserts are
    conflict-tolerant, so running this next to live traffic is safe. The
    caller commits.
    """
    repaired = 0
    while True:
        trees = await list_trees_missing_owner_membership(session, limit=batch_size)
        if not trees:
            break
        batch_repaired = 0
        for tree in trees:
            await ensure_user_exists(session, user_id=tree.owner_id, email=None)
            if await insert_membership_if_absent(
                session, tree_id=tree.id, user_id=tree.owner_id, role=ROLE_OWNER
            ):
                batch_repaired += 1
        await session.flush()
        repaired += batch_repaired
        # Every candidate lost a race to a concurrent writer; nothing left to repair in this pass.
        if batch_repaired == 0 or len(trees) < batch_size:
            break
    logger.info("owner_membership_backfill repaired=%s", repaired)
    return repaired
