from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from lineage.apps.api.deps import get_current_user, get_gateway
from lineage.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lineage.apps.api.response import SuccessEnvelope, get_request_id, success_response
from lineage.services.auth.tokens import AuthenticatedUser
from lineage.services.authz.roles import ROLE_VIEWER
from lineage.services.gateway import AccessGateway, GatewayResult, Target


router = APIRouter(tags=["access"], responses=DEFAULT_ERROR_RESPONSES)


class AccessResponse(BaseModel):
    tree_id: str
    required_role: str
    effective_role: str
    source: str | None


def _to_response(result: GatewayResult) -> AccessResponse:
    access = result.access
    return AccessResponse(
        tree_id=result.tree_id,
        required_role=access.required_role if access else ROLE_VIEWER,
        effective_role=result.effective_role,
        source=access.source if access else None,
    )


@router.get("/trees/{tree_id}/access", response_model=SuccessEnvelope[AccessResponse])
async def tree_access(
    tree_id: str,
    request: Request,
    required_role: str = Query(default=ROLE_VIEWER),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    # Report the caller's effective role; a denial surfaces as 403 with {required, current}.
    result = await gateway.check(
        user_id=user.user_id,
        target=Target.tree(tree_id),
        required_role=required_role,
        email=user.email,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=_to_response(result))


@router.get(
    "/entities/{entity_kind}/{entity_id}/access",
    response_model=SuccessEnvelope[AccessResponse],
)
async def entity_access(
    entity_kind: str,
    entity_id: str,
    request: Request,
    required_role: str = Query(default=ROLE_VIEWER),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    # Unresolvable entities answer 404 before any permission check.
    result = await gateway.check(
        user_id=user.user_id,
        target=Target.entity(entity_kind, entity_id),
        required_role=required_role,
        email=user.email,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=_to_response(result))
