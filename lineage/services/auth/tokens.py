from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt

from lineage.core.config import Settings, get_settings
from lineage.core.errors import UnauthenticatedError


AUTH_METHOD_JWT = "jwt"
AUTH_METHOD_DEV_BYPASS = "dev_bypass"


@dataclass(frozen=True)
class AuthenticatedUser:
    # Identity handed to the gateway; email feeds profile stubs created by self-heal.
    user_id: str
    email: str | None = None
    auth_method: str = AUTH_METHOD_JWT


def parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce the Bearer scheme; an absent header is reported as None, a malformed one raises.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthenticatedError("Missing or invalid bearer token")
    return parts[1]


def decode_access_token(token: str, *, settings: Settings | None = None) -> AuthenticatedUser:
    settings = settings or get_settings()
    options: dict[str, Any] = {"require": ["sub", "exp"]}
    if settings.auth_jwt_audience is None:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthenticatedError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise UnauthenticatedError("Invalid token") from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise UnauthenticatedError("Invalid token")
    email = claims.get("email")
    return AuthenticatedUser(
        user_id=subject,
        email=email if isinstance(email, str) else None,
        auth_method=AUTH_METHOD_JWT,
    )
