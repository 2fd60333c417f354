from __future__ import annotations

from typing import Any

from lineage.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *examples: tuple[str, dict[str, Any]]) -> dict[str, Any]:
    content: dict[str, Any] = {"application/json": {}}
    if len(examples) == 1:
        content["application/json"]["example"] = examples[0][1]
    else:
        content["application/json"]["examples"] = {name: {"value": value} for name, value in examples}
    return {"model": ErrorEnvelope, "description": description, "content": content}


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response(
        "Bad request",
        ("missing_identifier", _error_example(code="MISSING_IDENTIFIER", message="Tree ID required")),
    ),
    401: _response(
        "Unauthorized",
        ("unauthorized", _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token")),
    ),
    # Role and quota denials share 403 and are told apart by details shape.
    403: _response(
        "Forbidden",
        (
            "role",
            _error_example(
                code="TREE_FORBIDDEN",
                message="This action requires editor role. You have viewer role.",
                details={"required": "editor", "current": "viewer"},
            ),
        ),
        (
            "quota",
            _error_example(
                code="INSUFFICIENT_TOKENS",
                message="Insufficient tokens",
                details={"current_balance": 5, "required": 10},
            ),
        ),
    ),
    404: _response("Not found", ("not_found", _error_example(code="NOT_FOUND", message="Photo not found"))),
    500: _response(
        "Transient failure",
        ("transient", _error_example(code="TRANSIENT_FAILURE", message="Datastore unavailable")),
    ),
}
