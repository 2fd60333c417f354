from __future__ import annotations

from fastapi import Depends, Request, Response

from lineage.apps.api.response import get_request_id
from lineage.core.config import get_settings
from lineage.core.errors import UnauthenticatedError
from lineage.services.auth.tokens import (
    AUTH_METHOD_DEV_BYPASS,
    AuthenticatedUser,
    decode_access_token,
    parse_bearer_token,
)
from lineage.services.gateway import AccessGateway, GatewayResult, Target


TOKEN_BALANCE_HEADER = "X-Token-Balance"


def get_gateway(request: Request) -> AccessGateway:
    # The app factory owns the gateway; handlers only borrow it.
    return request.app.state.gateway


def _user_from_dev_headers(request: Request) -> AuthenticatedUser:
    # Trust caller-supplied identity headers only when explicitly enabled for local dev.
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise UnauthenticatedError("X-User-Id header is required in dev bypass mode")
    return AuthenticatedUser(
        user_id=user_id,
        email=request.headers.get("X-User-Email"),
        auth_method=AUTH_METHOD_DEV_BYPASS,
    )


async def get_current_user(request: Request) -> AuthenticatedUser:
    settings = get_settings()
    if settings.auth_dev_bypass or not settings.auth_enabled:
        return _user_from_dev_headers(request)
    token = parse_bearer_token(request.headers.get(settings.auth_header))
    if token is None:
        raise UnauthenticatedError("Missing or invalid bearer token")
    user = decode_access_token(token, settings=settings)
    request.state.user_id = user.user_id
    return user


def _set_balance_header(response: Response, balance: int | None) -> None:
    if balance is not None:
        response.headers[TOKEN_BALANCE_HEADER] = str(balance)


def _target_from_path(request: Request, entity_kind: str | None) -> Target:
    # Tree-scoped routes carry {tree_id}; entity routes carry {entity_id} (and optionally {entity_kind}).
    params = request.path_params
    if entity_kind is None and "entity_kind" not in params:
        return Target.tree(params.get("tree_id"))
    return Target.entity(entity_kind or params["entity_kind"], params.get("entity_id"))


def require_tree_role(
    minimum_role: str,
    *,
    entity_kind: str | None = None,
    cost: int | None = None,
    action: str | None = None,
):
    """Dependency factory gating a route on tree role (and optionally token cost).

    The gate resolves the target from path parameters, authorizes the caller,
    and, when ``cost`` is set, meters it. Denials raise before the handler
    runs; the remaining balance is echoed in ``X-Token-Balance``.
    """

    async def _dependency(
        request: Request,
        response: Response,
        user: AuthenticatedUser = Depends(get_current_user),
        gateway: AccessGateway = Depends(get_gateway),
    ) -> GatewayResult:
        result = await gateway.check(
            user_id=user.user_id,
            target=_target_from_path(request, entity_kind),
            required_role=minimum_role,
            email=user.email,
            cost=cost,
            action=action or f"{request.method} {request.url.path}",
            request_id=get_request_id(request),
        )
        _set_balance_header(response, result.remaining_balance)
        request.state.gateway_result = result
        return result

    return _dependency


def require_tokens(cost: int, *, action: str | None = None):
    # Dependency factory for metered routes that are not tree-scoped.
    async def _dependency(
        request: Request,
        response: Response,
        user: AuthenticatedUser = Depends(get_current_user),
        gateway: AccessGateway = Depends(get_gateway),
    ) -> int:
        result = await gateway.quota.require_quota(
            user_id=user.user_id,
            cost=cost,
            action=action or f"{request.method} {request.url.path}",
            request_id=get_request_id(request),
        )
        _set_balance_header(response, result.balance)
        return result.balance

    return _dependency
