from __future__ import annotations

from typing import Any

from assistcore.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _error_response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None):
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _error_response(
        "Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing account header"
    ),
    402: _error_response(
        "Quota exceeded",
        code="QUOTA_EXCEEDED",
        message="Daily AI call quota exceeded",
        details={"period": "day", "limit": 30, "used": 30, "remaining": 0},
    ),
    403: _error_response(
        "Feature not enabled",
        code="FEATURE_NOT_ENABLED",
        message="Feature not enabled for account plan: memory",
        details={"feature_key": "memory"},
    ),
    422: _error_response(
        "Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"
    ),
    500: _error_response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
    502: _error_response(
        "Malformed upstream response",
        code="MALFORMED_UPSTREAM_RESPONSE",
        message="Reasoning response is not valid JSON",
    ),
    503: _error_response(
        "Upstream unavailable",
        code="UPSTREAM_UNAVAILABLE",
        message="Embedding call failed",
        details={"retryable": True},
    ),
}
