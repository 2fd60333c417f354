from __future__ import annotations

from datetime import datetime
import hmac
import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field

from lineage.apps.api.deps import TOKEN_BALANCE_HEADER, get_current_user, get_gateway
from lineage.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lineage.apps.api.response import SuccessEnvelope, get_request_id, success_response
from lineage.core.config import get_settings
from lineage.core.errors import InvalidCouponError, MissingIdentifierError
from lineage.services.auth.tokens import AuthenticatedUser
from lineage.services.gateway import AccessGateway


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"], responses=DEFAULT_ERROR_RESPONSES)


class BalanceResponse(BaseModel):
    user_id: str
    balance: int
    plan_id: str
    plan_tier: str
    last_refill_at: datetime | None
    next_refill_at: datetime | None


class ConsumeRequest(BaseModel):
    cost: int = Field(ge=0)
    action: str = Field(min_length=1, max_length=128)


class ConsumeResponse(BaseModel):
    balance: int
    cost: int
    refilled: bool


class RedeemRequest(BaseModel):
    code: str | None = None


class RedeemResponse(BaseModel):
    balance: int
    granted: int


class UsageLogResponse(BaseModel):
    id: int
    amount: int
    action: str
    feature_name: str
    created_at: datetime


@router.get("/balance", response_model=SuccessEnvelope[BalanceResponse])
async def get_balance(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    balance_status = await gateway.quota.get_balance_status(user_id=user.user_id)
    return success_response(
        request=request,
        data=BalanceResponse(
            user_id=balance_status.user_id,
            balance=balance_status.balance,
            plan_id=balance_status.plan_id,
            plan_tier=balance_status.plan_tier,
            last_refill_at=balance_status.last_refill_at,
            next_refill_at=balance_status.next_refill_at,
        ),
    )


@router.post("/consume", response_model=SuccessEnvelope[ConsumeResponse])
async def consume(
    payload: ConsumeRequest,
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    # Metered features outside tree scope (e.g. AI helpers) spend through this route.
    result = await gateway.quota.require_quota(
        user_id=user.user_id,
        cost=payload.cost,
        action=payload.action,
        request_id=get_request_id(request),
    )
    response.headers[TOKEN_BALANCE_HEADER] = str(result.balance)
    return success_response(
        request=request,
        data=ConsumeResponse(balance=result.balance, cost=result.cost, refilled=result.refilled),
    )


@router.post("/redeem", response_model=SuccessEnvelope[RedeemResponse])
async def redeem(
    payload: RedeemRequest,
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    settings = get_settings()
    if not payload.code:
        raise MissingIdentifierError("Code is required")
    expected = settings.coupon_code
    if not expected or not hmac.compare_digest(payload.code.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("coupon_redeem_rejected user_id=%s", user.user_id)
        raise InvalidCouponError()
    balance = await gateway.quota.grant_tokens(
        user_id=user.user_id,
        amount=settings.coupon_grant_amount,
        action="coupon_redeem",
        request_id=get_request_id(request),
    )
    response.headers[TOKEN_BALANCE_HEADER] = str(balance)
    return success_response(
        request=request,
        data=RedeemResponse(balance=balance, granted=settings.coupon_grant_amount),
    )


@router.get("/history", response_model=SuccessEnvelope[list[UsageLogResponse]])
async def history(
    request: Request,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    records = await gateway.quota.list_usage(user_id=user.user_id, offset=offset, limit=limit)
    return success_response(
        request=request,
        data=[
            UsageLogResponse(
                id=record.id,
                amount=record.amount,
                action=record.action,
                feature_name=record.feature_name,
                created_at=record.created_at,
            ).model_dump(mode="json")
            for record in records
        ],
    )
