from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from lineage.core.config import get_settings
from lineage.core.errors import UnauthenticatedError
from lineage.services.auth.tokens import decode_access_token, parse_bearer_token


def _token(secret: str = "dev-jwt-secret-change-me-in-production", **claims) -> str:
    payload = {"sub": "user-1", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_decode_valid_token() -> None:
    user = decode_access_token(_token(email="ada@example.com"))

    assert user.user_id == "user-1"
    assert user.email == "ada@example.com"
    assert user.auth_method == "jwt"


@pytest.mark.parametrize(
    "token",
    [
        _token(secret="another-secret-that-is-long-enough-0000"),
        _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)),
        "not-a-jwt",
    ],
)
def test_decode_rejects_bad_tokens(token: str) -> None:
    with pytest.raises(UnauthenticatedError):
        decode_access_token(token)


def test_audience_is_checked_when_configured(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_JWT_AUDIENCE", "authenticated")
    get_settings.cache_clear()

    assert decode_access_token(_token(aud="authenticated")).user_id == "user-1"
    with pytest.raises(UnauthenticatedError):
        decode_access_token(_token(aud="anon"))


def test_parse_bearer_token() -> None:
    assert parse_bearer_token(None) is None
    assert parse_bearer_token("Bearer abc") == "abc"
    with pytest.raises(UnauthenticatedError):
        parse_bearer_token("Basic abc")
