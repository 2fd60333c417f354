from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.exc import SQLAlchemyError

from lineage.core.config import get_settings
from lineage.core.errors import MissingIdentifierError, TreeForbiddenError
from lineage.persistence.db import SessionFactory
from lineage.persistence.repos.memberships import get_membership_role, insert_membership_if_absent
from lineage.persistence.repos.trees import get_tree_owner_id
from lineage.persistence.repos.users import ensure_user_exists
from lineage.services.audit import AuditSink
from lineage.services.authz.resolver import ENTITY_TREE, EntityResolverRegistry
from lineage.services.authz.roles import ROLE_OWNER, normalize_role, satisfies
from lineage.services.background import BackgroundTasks
from lineage.services.datastore import bounded_call


logger = logging.getLogger(__name__)

SOURCE_MEMBERSHIP = "membership"
SOURCE_OWNER_FALLBACK = "owner_fallback"


@dataclass(frozen=True)
class AccessDecision:
    # Outcome of one authorization check; effective_role is None when the caller has no access at all.
    allowed: bool
    tree_id: str
    required_role: str
    effective_role: str | None
    source: str | None = None

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise TreeForbiddenError(required=self.required_role, current=self.effective_role)


class TreeAccessAuthorizer:
    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        registry: EntityResolverRegistry,
        tasks: BackgroundTasks,
        audit: AuditSink | None = None,
        timeout_ms: int | None = None,
        self_heal_enabled: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._registry = registry
        self._tasks = tasks
        self._audit = audit
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.db_call_timeout_ms
        self._self_heal_enabled = (
            self_heal_enabled if self_heal_enabled is not None else settings.authz_self_heal_enabled
        )

    async def resolve_tree(self, *, entity_kind: str, entity_id: str | None) -> str:
        # A tree reference is its own answer; existence is left to evaluate so a
        # missing tree is denied the same way on every route.
        if entity_kind == ENTITY_TREE:
            if not entity_id:
                raise MissingIdentifierError("Tree ID required")
            return entity_id

        async def _resolve() -> str:
            async with self._session_factory() as session:
                return await self._registry.resolve_tree(
                    session, entity_kind=entity_kind, entity_id=entity_id
                )

        return await bounded_call(_resolve, timeout_ms=self._timeout_ms, operation="resolve_tree")

    async def evaluate(
        self,
        *,
        user_id: str,
        tree_id: str | None,
        required_role: str,
        email: str | None = None,
        request_id: str | None = None,
    ) -> AccessDecision:
        # Membership first, then tree ownership; the ownership path is re-derived on every call.
        if not tree_id:
            raise MissingIdentifierError("Tree ID required")
        required = normalize_role(required_role)

        async def _lookup() -> tuple[str | None, str | None]:
            async with self._session_factory() as session:
                role = await get_membership_role(session, tree_id=tree_id, user_id=user_id)
                if role is not None:
                    return role, None
                owner_id = await get_tree_owner_id(session, tree_id=tree_id)
                return None, owner_id

        role, owner_id = await bounded_call(_lookup, timeout_ms=self._timeout_ms, operation="authorize")

        if role is not None:
            allowed = satisfies(role, required)
            decision = AccessDecision(
                allowed=allowed,
                tree_id=tree_id,
                required_role=required,
                effective_role=role,
                source=SOURCE_MEMBERSHIP,
            )
            if not allowed:
                self._record_denial(user_id=user_id, decision=decision, request_id=request_id)
            return decision

        if owner_id is not None and owner_id == user_id:
            if self._self_heal_enabled:
                self._tasks.spawn(
                    self._heal_owner_membership(
                        user_id=user_id, tree_id=tree_id, email=email, request_id=request_id
                    ),
                    name=f"self_heal:{tree_id}:{user_id}",
                )
            return AccessDecision(
                allowed=True,
                tree_id=tree_id,
                required_role=required,
                effective_role=ROLE_OWNER,
                source=SOURCE_OWNER_FALLBACK,
            )

        decision = AccessDecision(
            allowed=False,
            tree_id=tree_id,
            required_role=required,
            effective_role=None,
        )
        self._record_denial(user_id=user_id, decision=decision, request_id=request_id)
        return decision

    async def authorize(
        self,
        *,
        user_id: str,
        tree_id: str | None,
        required_role: str,
        email: str | None = None,
        request_id: str | None = None,
    ) -> AccessDecision:
        decision = await self.evaluate(
            user_id=user_id,
            tree_id=tree_id,
            required_role=required_role,
            email=email,
            request_id=request_id,
        )
        decision.raise_for_denial()
        return decision

    async def authorize_entity(
        self,
        *,
        user_id: str,
        entity_kind: str,
        entity_id: str | None,
        required_role: str,
        email: str | None = None,
        request_id: str | None = None,
    ) -> AccessDecision:
        # Resolution failures raise EntityNotFoundError before any permission check runs.
        tree_id = await self.resolve_tree(entity_kind=entity_kind, entity_id=entity_id)
        return await self.authorize(
            user_id=user_id,
            tree_id=tree_id,
            required_role=required_role,
            email=email,
            request_id=request_id,
        )

    async def _heal_owner_membership(
        self, *, user_id: str, tree_id: str, email: str | None, request_id: str | None = None
    ) -> bool:
        # Profile stub first: tree_members.user_id references users.id.
        async with self._session_factory() as session:
            try:
                await ensure_user_exists(session, user_id=user_id, email=email)
                inserted = await insert_membership_if_absent(
                    session, tree_id=tree_id, user_id=user_id, role=ROLE_OWNER
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "membership_self_heal_failed tree_id=%s user_id=%s", tree_id, user_id, exc_info=exc
                )
                return False

        if inserted:
            logger.info("membership_self_healed tree_id=%s user_id=%s", tree_id, user_id)
            if self._audit is not None:
                await self._audit.record_event(
                    event_type="authz.membership.self_healed",
                    outcome="success",
                    actor_id=user_id,
                    tree_id=tree_id,
                    resource_type="tree_member",
                    resource_id=user_id,
                    request_id=request_id,
                    metadata={"role": ROLE_OWNER},
                )
        return inserted

    def _record_denial(self, *, user_id: str, decision: AccessDecision, request_id: str | None) -> None:
        if self._audit is None:
            return
        self._tasks.spawn(
            self._audit.record_event(
                event_type="authz.tree.forbidden",
                outcome="failure",
                actor_id=user_id,
                tree_id=decision.tree_id,
                resource_type="tree",
                resource_id=decision.tree_id,
                request_id=request_id,
                metadata={"required": decision.required_role, "current": decision.effective_role},
                error_code=TreeForbiddenError.code,
            ),
            name=f"audit:authz.tree.forbidden:{decision.tree_id}",
        )
