from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel

from lineage.apps.api.deps import get_current_user, get_gateway, require_tree_role
from lineage.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from lineage.apps.api.response import SuccessEnvelope, get_request_id, success_response
from lineage.core.errors import InvalidRoleError
from lineage.services.auth.tokens import AuthenticatedUser
from lineage.services.authz.roles import ASSIGNABLE_ROLES, ROLE_OWNER, ROLE_VIEWER, normalize_role
from lineage.services.gateway import AccessGateway, GatewayResult
from lineage.services.memberships import MemberView


router = APIRouter(prefix="/trees/{tree_id}/members", tags=["members"], responses=DEFAULT_ERROR_RESPONSES)


class MemberResponse(BaseModel):
    tree_id: str
    user_id: str
    role: str
    created_at: datetime | None


class MemberGrantRequest(BaseModel):
    user_id: str
    role: str = ROLE_VIEWER
    email: str | None = None


class MemberRoleUpdateRequest(BaseModel):
    role: str


def _to_response(member: MemberView) -> MemberResponse:
    return MemberResponse(
        tree_id=member.tree_id,
        user_id=member.user_id,
        role=member.role,
        created_at=member.created_at,
    )


@router.get("", response_model=SuccessEnvelope[list[MemberResponse]])
async def list_members(
    tree_id: str,
    request: Request,
    _gate: GatewayResult = Depends(require_tree_role(ROLE_VIEWER)),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    members = await gateway.memberships.list_members(tree_id=tree_id)
    return success_response(
        request=request,
        data=[_to_response(member).model_dump(mode="json") for member in members],
    )


@router.post("", response_model=SuccessEnvelope[MemberResponse])
async def grant_member(
    tree_id: str,
    payload: MemberGrantRequest,
    request: Request,
    response: Response,
    _gate: GatewayResult = Depends(require_tree_role(ROLE_OWNER)),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    # Owners invite as editor or viewer; ownership is never granted through this route.
    role = normalize_role(payload.role)
    if role not in ASSIGNABLE_ROLES:
        raise InvalidRoleError(f"Role must be one of: {', '.join(sorted(ASSIGNABLE_ROLES))}")
    result = await gateway.memberships.grant_membership(
        tree_id=tree_id, user_id=payload.user_id, role=role, email=payload.email
    )
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return success_response(request=request, data=_to_response(result.member))


@router.patch("/{user_id}", response_model=SuccessEnvelope[MemberResponse])
async def change_member_role(
    tree_id: str,
    user_id: str,
    payload: MemberRoleUpdateRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    _gate: GatewayResult = Depends(require_tree_role(ROLE_OWNER)),
    gateway: AccessGateway = Depends(get_gateway),
) -> dict:
    member = await gateway.memberships.change_member_role(
        tree_id=tree_id,
        actor_id=user.user_id,
        user_id=user_id,
        role=payload.role,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=_to_response(member))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    tree_id: str,
    user_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    _gate: GatewayResult = Depends(require_tree_role(ROLE_OWNER)),
    gateway: AccessGateway = Depends(get_gateway),
) -> Response:
    await gateway.memberships.remove_member(
        tree_id=tree_id,
        actor_id=user.user_id,
        user_id=user_id,
        request_id=get_request_id(request),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
