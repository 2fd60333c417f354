from __future__ import annotations

from dataclasses import dataclass

from lineage.core.errors import MissingIdentifierError
from lineage.persistence.db import SessionFactory
from lineage.services.audit import AuditSink
from lineage.services.authz.resolver import EntityResolverRegistry, build_default_registry
from lineage.services.authz.tree_access import AccessDecision, TreeAccessAuthorizer
from lineage.services.background import BackgroundTasks
from lineage.services.memberships import MembershipService
from lineage.services.quota import QuotaResult, QuotaService


@dataclass(frozen=True)
class Target:
    # Either an explicit tree id or an (entity_kind, entity_id) reference to resolve.
    tree_id: str | None = None
    entity_kind: str | None = None
    entity_id: str | None = None

    @classmethod
    def tree(cls, tree_id: str | None) -> "Target":
        return cls(tree_id=tree_id)

    @classmethod
    def entity(cls, entity_kind: str, entity_id: str | None) -> "Target":
        return cls(entity_kind=entity_kind, entity_id=entity_id)


@dataclass(frozen=True)
class GatewayResult:
    tree_id: str
    effective_role: str
    remaining_balance: int | None = None
    access: AccessDecision | None = None
    quota: QuotaResult | None = None


class AccessGateway:
    """Resolve -> authorize -> meter, short-circuiting on the first denial."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        registry: EntityResolverRegistry | None = None,
        tasks: BackgroundTasks | None = None,
        audit: AuditSink | None = None,
        authorizer: TreeAccessAuthorizer | None = None,
        quota: QuotaService | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.tasks = tasks or BackgroundTasks()
        self.audit = audit or AuditSink(session_factory)
        self.registry = registry or build_default_registry()
        self.authorizer = authorizer or TreeAccessAuthorizer(
            session_factory=session_factory,
            registry=self.registry,
            tasks=self.tasks,
            audit=self.audit,
        )
        self.quota = quota or QuotaService(
            session_factory=session_factory,
            tasks=self.tasks,
            audit=self.audit,
        )
        self.memberships = MembershipService(
            session_factory=session_factory,
            tasks=self.tasks,
            audit=self.audit,
        )

    async def resolve(self, target: Target) -> str:
        if target.tree_id:
            return target.tree_id
        if target.entity_kind:
            return await self.authorizer.resolve_tree(
                entity_kind=target.entity_kind, entity_id=target.entity_id
            )
        raise MissingIdentifierError("Tree ID required")

    async def check(
        self,
        *,
        user_id: str,
        target: Target,
        required_role: str,
        email: str | None = None,
        cost: int | None = None,
        action: str | None = None,
        request_id: str | None = None,
    ) -> GatewayResult:
        tree_id = await self.resolve(target)
        access = await self.authorizer.authorize(
            user_id=user_id,
            tree_id=tree_id,
            required_role=required_role,
            email=email,
            request_id=request_id,
        )
        if cost is None:
            return GatewayResult(
                tree_id=tree_id,
                effective_role=access.effective_role or "",
                access=access,
            )
        quota = await self.quota.require_quota(
            user_id=user_id,
            cost=cost,
            action=action or f"tree:{tree_id}",
            request_id=request_id,
        )
        return GatewayResult(
            tree_id=tree_id,
            effective_role=access.effective_role or "",
            remaining_balance=quota.balance,
            access=access,
            quota=quota,
        )

    async def shutdown(self, timeout: float | None = 5.0) -> None:
        await self.tasks.drain(timeout=timeout)
