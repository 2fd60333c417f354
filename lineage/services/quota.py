from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Awaitable, Callable

from lineage.core.config import get_settings
from lineage.core.errors import (
    InvalidAmountError,
    MissingIdentifierError,
    QuotaExceededError,
    TransientError,
)
from lineage.persistence.db import SessionFactory
from lineage.persistence.repos.tokens import (
    add_tokens,
    deduct_if_sufficient,
    get_balance,
    insert_balance_if_absent,
    reset_balance_if_stale,
    set_balance,
)
from lineage.persistence.repos.usage import list_usage_logs
from lineage.services.audit import AuditSink, UsageLogEntry
from lineage.services.background import BackgroundTasks
from lineage.services.datastore import bounded_call
from lineage.services.plans import Plan, get_active_plan


logger = logging.getLogger(__name__)

PlanResolver = Callable[..., Awaitable[Plan]]


@dataclass(frozen=True)
class QuotaResult:
    # balance is the post-deduction balance when allowed, the untouched balance when denied.
    allowed: bool
    balance: int
    cost: int
    refilled: bool = False
    refill_quota: int | None = None

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise QuotaExceededError(current_balance=self.balance, required=self.cost)


@dataclass(frozen=True)
class BalanceStatus:
    user_id: str
    balance: int
    plan_id: str
    plan_tier: str
    last_refill_at: datetime | None
    next_refill_at: datetime | None


@dataclass(frozen=True)
class UsageRecord:
    id: int
    amount: int
    action: str
    feature_name: str
    created_at: datetime


class QuotaService:
    """Per-user token metering with lazy 30-day refills.

    The read-check-write sequence is expressed as conditional UPDATEs so it
    stays atomic across processes without in-process locks:

    * refill: ``SET balance = quota, last_refill_at = now WHERE last_refill_at < cutoff``
    * deduct: ``SET balance = balance - cost WHERE balance >= cost``

    A statement that matches no row means another request got there first;
    the balance is re-read and the decision re-made, up to
    ``quota_max_attempts`` times.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        tasks: BackgroundTasks,
        audit: AuditSink | None = None,
        plan_resolver: PlanResolver | None = None,
        time_provider: Callable[[], datetime] | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._tasks = tasks
        self._audit = audit
        self._plan_resolver = plan_resolver or get_active_plan
        # Allow time injection for deterministic refill tests.
        self._time_provider = time_provider or _utc_now
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.db_call_timeout_ms
        self._default_balance = settings.quota_default_balance
        self._refill_period = timedelta(days=settings.quota_refill_period_days)
        self._max_attempts = max(1, settings.quota_max_attempts)

    async def consume(
        self, *, user_id: str, cost: int, action: str, request_id: str | None = None
    ) -> QuotaResult:
        if not user_id:
            raise MissingIdentifierError("User ID required")
        _validate_amount(cost)
        now = self._time_provider()

        result = await bounded_call(
            lambda: self._consume(user_id=user_id, cost=cost, now=now),
            timeout_ms=self._timeout_ms,
            operation="consume_tokens",
        )

        if result.refilled:
            logger.info("quota_refilled user_id=%s balance=%s", user_id, result.refill_quota)
            self._emit_event(
                event_type="quota.refilled",
                outcome="success",
                user_id=user_id,
                metadata={"refill_quota": result.refill_quota},
                request_id=request_id,
            )
        if not result.allowed:
            self._emit_event(
                event_type="quota.insufficient",
                outcome="failure",
                user_id=user_id,
                metadata={"current_balance": result.balance, "required": cost, "action": action},
                request_id=request_id,
                error_code=QuotaExceededError.code,
            )
            return result

        # The deduction is committed; the usage log is best-effort and detached.
        if self._audit is not None:
            entry = UsageLogEntry(user_id=user_id, cost=cost, action=action, occurred_at=now)
            self._tasks.spawn(self._audit.append_usage(entry), name=f"usage_log:{user_id}")
        return result

    async def require_quota(
        self, *, user_id: str, cost: int, action: str, request_id: str | None = None
    ) -> QuotaResult:
        result = await self.consume(user_id=user_id, cost=cost, action=action, request_id=request_id)
        result.raise_for_denial()
        return result

    async def get_balance_status(self, *, user_id: str) -> BalanceStatus:
        # Read-only view; a missing ledger row is reported with the default balance and not created.
        if not user_id:
            raise MissingIdentifierError("User ID required")

        async def _read() -> BalanceStatus:
            async with self._session_factory() as session:
                row = await get_balance(session, user_id=user_id)
                plan = await self._plan_resolver(session, user_id=user_id)
            if row is None:
                return BalanceStatus(
                    user_id=user_id,
                    balance=self._default_balance,
                    plan_id=plan.id,
                    plan_tier=plan.tier,
                    last_refill_at=None,
                    next_refill_at=None,
                )
            last_refill_at = _as_utc(row.last_refill_at)
            return BalanceStatus(
                user_id=user_id,
                balance=row.balance,
                plan_id=plan.id,
                plan_tier=plan.tier,
                last_refill_at=last_refill_at,
                next_refill_at=last_refill_at + self._refill_period,
            )

        return await bounded_call(_read, timeout_ms=self._timeout_ms, operation="balance_status")

    async def list_usage(self, *, user_id: str, offset: int = 0, limit: int = 50) -> list[UsageRecord]:
        if not user_id:
            raise MissingIdentifierError("User ID required")

        async def _list() -> list[UsageRecord]:
            async with self._session_factory() as session:
                rows = await list_usage_logs(session, user_id=user_id, offset=offset, limit=limit)
            return [
                UsageRecord(
                    id=row.id,
                    amount=row.amount,
                    action=row.action,
                    feature_name=row.feature_name,
                    created_at=_as_utc(row.created_at),
                )
                for row in rows
            ]

        return await bounded_call(_list, timeout_ms=self._timeout_ms, operation="list_usage")

    async def grant_tokens(
        self, *, user_id: str, amount: int, action: str, request_id: str | None = None
    ) -> int:
        # Additive grant (coupon, support credit); the refill window is left untouched.
        if not user_id:
            raise MissingIdentifierError("User ID required")
        _validate_amount(amount)
        now = self._time_provider()

        async def _grant() -> int:
            async with self._session_factory() as session:
                await insert_balance_if_absent(
                    session, user_id=user_id, balance=self._default_balance, now=now
                )
                balance = await add_tokens(session, user_id=user_id, amount=amount, now=now)
                if balance is None:
                    await session.rollback()
                    raise TransientError("Token balance disappeared during grant")
                await session.commit()
                return balance

        balance = await bounded_call(_grant, timeout_ms=self._timeout_ms, operation="grant_tokens")
        logger.info("quota_granted user_id=%s amount=%s balance=%s", user_id, amount, balance)
        self._emit_event(
            event_type="quota.granted",
            outcome="success",
            user_id=user_id,
            metadata={"amount": amount, "action": action, "balance": balance},
            request_id=request_id,
        )
        if self._audit is not None:
            entry = UsageLogEntry(
                user_id=user_id,
                cost=amount,
                action=action,
                occurred_at=now,
                feature_name="grant",
            )
            self._tasks.spawn(self._audit.append_usage(entry), name=f"usage_log:{user_id}")
        return balance

    async def reset_to_plan(self, *, user_id: str, plan: Plan, request_id: str | None = None) -> int:
        # Subscription activation: reset (not add) to the plan quota and restart the refill window.
        if not user_id:
            raise MissingIdentifierError("User ID required")
        now = self._time_provider()

        async def _reset() -> int:
            async with self._session_factory() as session:
                inserted = await insert_balance_if_absent(
                    session, user_id=user_id, balance=plan.refill_quota, now=now
                )
                if not inserted:
                    await set_balance(session, user_id=user_id, balance=plan.refill_quota, now=now)
                await session.commit()
            return plan.refill_quota

        balance = await bounded_call(_reset, timeout_ms=self._timeout_ms, operation="reset_to_plan")
        self._emit_event(
            event_type="quota.refilled",
            outcome="success",
            user_id=user_id,
            metadata={"refill_quota": plan.refill_quota, "plan_id": plan.id, "reason": "plan_change"},
            request_id=request_id,
        )
        return balance

    async def _consume(self, *, user_id: str, cost: int, now: datetime) -> QuotaResult:
        cutoff = now - self._refill_period
        refilled = False
        refill_quota: int | None = None

        async with self._session_factory() as session:
            for _attempt in range(self._max_attempts):
                row = await get_balance(session, user_id=user_id)
                if row is None:
                    # First metered request: the fresh row counts as just refilled.
                    await insert_balance_if_absent(
                        session, user_id=user_id, balance=self._default_balance, now=now
                    )
                    await session.commit()
                    continue

                if _as_utc(row.last_refill_at) < cutoff:
                    plan = await self._plan_resolver(session, user_id=user_id)
                    # Zero rows matched means a concurrent request already refilled; just re-read.
                    if await reset_balance_if_stale(
                        session, user_id=user_id, quota=plan.refill_quota, now=now, cutoff=cutoff
                    ):
                        refilled = True
                        refill_quota = plan.refill_quota
                    await session.commit()
                    continue

                current = int(row.balance)
                if current < cost:
                    await session.rollback()
                    return QuotaResult(
                        allowed=False,
                        balance=current,
                        cost=cost,
                        refilled=refilled,
                        refill_quota=refill_quota,
                    )

                remaining = await deduct_if_sufficient(session, user_id=user_id, cost=cost, now=now)
                if remaining is None:
                    await session.rollback()
                    continue
                await session.commit()
                return QuotaResult(
                    allowed=True,
                    balance=int(remaining),
                    cost=cost,
                    refilled=refilled,
                    refill_quota=refill_quota,
                )

        logger.warning("quota_contention_exhausted user_id=%s attempts=%s", user_id, self._max_attempts)
        raise TransientError("Token balance is busy; retry the request")

    def _emit_event(
        self,
        *,
        event_type: str,
        outcome: str,
        user_id: str,
        metadata: dict,
        request_id: str | None = None,
        error_code: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._tasks.spawn(
            self._audit.record_event(
                event_type=event_type,
                outcome=outcome,
                actor_id=user_id,
                resource_type="token_balance",
                resource_id=user_id,
                request_id=request_id,
                metadata=metadata,
                error_code=error_code,
            ),
            name=f"audit:{event_type}:{user_id}",
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(f"Invalid token amount: {amount!r}")

