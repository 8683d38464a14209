from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assistcore.apps.api.response import error_response
from assistcore.core.errors import (
    AssistError,
    FeatureDisabledError,
    MalformedUpstreamResponseError,
    ProviderConfigError,
    QuotaExceededError,
    UpstreamServiceError,
)


logger = logging.getLogger(__name__)

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}

# First match wins, so subclasses go before their bases.
_DOMAIN_ERRORS: tuple[tuple[type[AssistError], int, str], ...] = (
    (FeatureDisabledError, 403, "FEATURE_NOT_ENABLED"),
    (QuotaExceededError, 402, "QUOTA_EXCEEDED"),
    (UpstreamServiceError, 503, "UPSTREAM_UNAVAILABLE"),
    (MalformedUpstreamResponseError, 502, "MALFORMED_UPSTREAM_RESPONSE"),
    (ProviderConfigError, 500, "PROVIDER_CONFIG_ERROR"),
)


def _error_json(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers FastAPI's HTTPException and router-level 404/405 alike.
    code = _STATUS_CODES.get(exc.status_code, "UNKNOWN_ERROR")
    message = "Request failed"
    details = None
    if isinstance(exc.detail, dict):
        code = str(exc.detail.get("code") or code)
        message = str(exc.detail.get("message") or message)
        details = {k: v for k, v in exc.detail.items() if k not in {"code", "message"}} or None
    elif isinstance(exc.detail, str):
        message = exc.detail
    return _error_json(request, exc.status_code, code, message, details, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_json(
        request,
        422,
        "REQUEST_VALIDATION_ERROR",
        "Validation error",
        {"errors": jsonable_encoder(exc.errors())},
    )


def _details_for(exc: AssistError) -> tuple[dict[str, Any] | None, dict[str, str] | None]:
    if isinstance(exc, FeatureDisabledError):
        return {"feature_key": exc.feature_key}, None
    if isinstance(exc, QuotaExceededError):
        headers = {
            "X-Quota-Day-Limit": str(exc.limit),
            "X-Quota-Day-Used": str(exc.used),
            "X-Quota-Day-Remaining": "0",
        }
        return {"period": "day", "limit": exc.limit, "used": exc.used, "remaining": 0}, headers
    if isinstance(exc, UpstreamServiceError):
        return {"retryable": True}, None
    return None, None


async def assist_error_handler(request: Request, exc: AssistError) -> JSONResponse:
    # Domain error messages are written to be shown to users.
    status_code, code = 500, "INTERNAL_ERROR"
    for error_type, mapped_status, mapped_code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            status_code, code = mapped_status, mapped_code
            break
    if status_code >= 500 and not isinstance(exc, UpstreamServiceError):
        logger.error("assist_error path=%s code=%s error=%s", request.url.path, code, exc)
    details, headers = _details_for(exc)
    return _error_json(request, status_code, code, str(exc), details, headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to clients.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return _error_json(request, 500, "INTERNAL_ERROR", "Internal server error")
