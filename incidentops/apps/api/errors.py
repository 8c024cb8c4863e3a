from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from incidentops.apps.api.response import error_response
from incidentops.core.errors import IncidentOpsError
from incidentops.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_REQUIRED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    415: "UNSUPPORTED_MEDIA_TYPE",
    429: "QUOTA_EXCEEDED",
    500: "INTERNAL_ERROR",
}

# Validation error fields that may carry raw input or non-JSON objects.
_VALIDATION_DROP_KEYS = {"ctx", "input", "url"}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def incidentops_exception_handler(request: Request, exc: IncidentOpsError) -> JSONResponse:
    # Domain errors already carry their stable code and HTTP status.
    payload = error_response(
        request=request, code=exc.code, message=exc.message, details=exc.details
    )
    return JSONResponse(content=payload, status_code=exc.status_code)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (unknown routes, bad methods) share the envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


def _clean_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {key: value for key, value in error.items() if key not in _VALIDATION_DROP_KEYS}
        for error in errors
    ]


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Surface validation errors with structured details as a 400 client error.
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="Request validation failed.",
        details={"errors": _clean_validation_errors(list(exc.errors()))},
    )
    return JSONResponse(content=payload, status_code=400)


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    # A repository call without a tenant is a server bug, not a client error.
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="An unexpected error occurred.",
    )
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception(
        "unhandled_exception path=%s request_id=%s",
        request.url.path,
        getattr(request.state, "request_id", None),
        exc_info=exc,
    )
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="An unexpected error occurred.",
    )
    return JSONResponse(content=payload, status_code=500)
