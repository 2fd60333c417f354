from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from lineage.core.config import get_settings
from lineage.core.errors import EntityNotFoundError, InvalidRoleError, MembershipConflictError
from lineage.persistence.db import SessionFactory
from lineage.persistence.repos.memberships import (
    delete_membership,
    get_membership,
    insert_membership_if_absent,
    list_memberships,
    update_membership_role,
)
from lineage.persistence.repos.trees import get_tree_owner_id
from lineage.persistence.repos.users import ensure_user_exists
from lineage.services.audit import AuditSink
from lineage.services.authz.roles import ASSIGNABLE_ROLES, normalize_role
from lineage.services.background import BackgroundTasks
from lineage.services.datastore import bounded_call


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberView:
    tree_id: str
    user_id: str
    role: str
    created_at: datetime | None


@dataclass(frozen=True)
class GrantResult:
    member: MemberView
    created: bool


class MembershipService:
    """Membership bookkeeping used by tree creation, invitations and owners.

    Callers must already have passed the gateway: viewer to list members,
    owner for every mutation.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        tasks: BackgroundTasks,
        audit: AuditSink | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tasks = tasks
        self._audit = audit
        self._timeout_ms = timeout_ms if timeout_ms is not None else get_settings().db_call_timeout_ms

    async def grant_membership(
        self,
        *,
        tree_id: str,
        user_id: str,
        role: str,
        email: str | None = None,
    ) -> GrantResult:
        # Idempotent on (tree, user): an existing row is returned as-is, never overwritten.
        normalized = normalize_role(role)

        async def _grant() -> GrantResult:
            async with self._session_factory() as session:
                await ensure_user_exists(session, user_id=user_id, email=email)
                created = await insert_membership_if_absent(
                    session, tree_id=tree_id, user_id=user_id, role=normalized
                )
                await session.commit()
                member = await get_membership(session, tree_id=tree_id, user_id=user_id)
            if member is None:
                raise EntityNotFoundError("membership")
            return GrantResult(member=_view(member), created=created)

        return await bounded_call(_grant, timeout_ms=self._timeout_ms, operation="grant_membership")

    async def list_members(self, *, tree_id: str) -> list[MemberView]:
        async def _list() -> list[MemberView]:
            async with self._session_factory() as session:
                return [_view(row) for row in await list_memberships(session, tree_id=tree_id)]

        return await bounded_call(_list, timeout_ms=self._timeout_ms, operation="list_members")

    async def change_member_role(
        self,
        *,
        tree_id: str,
        actor_id: str,
        user_id: str,
        role: str,
        request_id: str | None = None,
    ) -> MemberView:
        normalized = normalize_role(role)
        if normalized not in ASSIGNABLE_ROLES:
            raise InvalidRoleError(f"Role must be one of: {', '.join(sorted(ASSIGNABLE_ROLES))}")

        async def _change() -> MemberView:
            async with self._session_factory() as session:
                owner_id = await get_tree_owner_id(session, tree_id=tree_id)
                if owner_id == user_id:
                    raise MembershipConflictError("The tree owner's role cannot be changed")
                if not await update_membership_role(
                    session, tree_id=tree_id, user_id=user_id, role=normalized
                ):
                    raise EntityNotFoundError("membership", "Member not found")
                await session.commit()
                member = await get_membership(session, tree_id=tree_id, user_id=user_id)
            if member is None:
                raise EntityNotFoundError("membership", "Member not found")
            return _view(member)

        member = await bounded_call(_change, timeout_ms=self._timeout_ms, operation="change_member_role")
        self._emit_event(
            event_type="members.role_changed",
            actor_id=actor_id,
            tree_id=tree_id,
            user_id=user_id,
            metadata={"role": normalized},
            request_id=request_id,
        )
        return member

    async def remove_member(
        self, *, tree_id: str, actor_id: str, user_id: str, request_id: str | None = None
    ) -> None:
        if user_id == actor_id:
            raise MembershipConflictError("Owners cannot remove their own membership")

        async def _remove() -> None:
            async with self._session_factory() as session:
                if not await delete_membership(session, tree_id=tree_id, user_id=user_id):
                    raise EntityNotFoundError("membership", "Member not found")
                await session.commit()

        await bounded_call(_remove, timeout_ms=self._timeout_ms, operation="remove_member")
        logger.info("member_removed tree_id=%s user_id=%s actor_id=%s", tree_id, user_id, actor_id)
        self._emit_event(
            event_type="members.removed",
            actor_id=actor_id,
            tree_id=tree_id,
            user_id=user_id,
            metadata={},
            request_id=request_id,
        )

    def _emit_event(
        self,
        *,
        event_type: str,
        actor_id: str,
        tree_id: str,
        user_id: str,
        metadata: dict,
        request_id: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._tasks.spawn(
            self._audit.record_event(
                event_type=event_type,
                outcome="success",
                actor_id=actor_id,
                tree_id=tree_id,
                resource_type="tree_member",
                resource_id=user_id,
                request_id=request_id,
                metadata=metadata,
            ),
            name=f"audit:{event_type}:{tree_id}",
        )


def _view(row) -> MemberView:
    return MemberView(tree_id=row.tree_id, user_id=row.user_id, role=row.role, created_at=row.created_at)
