from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from lineage.core.config import Settings, get_settings
from lineage.persistence.repos.subscriptions import get_active_subscription


PLAN_FREE = "free"
PLAN_PRO_MONTHLY = "pro_monthly"
PLAN_PRO_YEARLY = "pro_yearly"


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    tier: str
    refill_quota: int


def plan_catalog(settings: Settings | None = None) -> dict[str, Plan]:
    settings = settings or get_settings()
    return {
        PLAN_FREE: Plan(id=PLAN_FREE, name="Free", tier="free", refill_quota=settings.quota_plan_free),
        PLAN_PRO_MONTHLY: Plan(
            id=PLAN_PRO_MONTHLY,
            name="Pro Monthly",
            tier="pro",
            refill_quota=settings.quota_plan_pro_monthly,
        ),
        PLAN_PRO_YEARLY: Plan(
            id=PLAN_PRO_YEARLY,
            name="Pro Yearly",
            tier="pro",
            refill_quota=settings.quota_plan_pro_yearly,
        ),
    }


def plan_for_id(plan_id: str | None, settings: Settings | None = None) -> Plan:
    # Unknown ids on an active subscription are paid plans we cannot map; bill them as monthly pro.
    catalog = plan_catalog(settings)
    if plan_id is None:
        return catalog[PLAN_FREE]
    return catalog.get(plan_id, catalog[PLAN_PRO_MONTHLY])


async def get_active_plan(session: AsyncSession, *, user_id: str) -> Plan:
    subscription = await get_active_subscription(session, user_id=user_id)
    if subscription is None:
        return plan_for_id(None)
    return plan_for_id(subscription.plan_id)
