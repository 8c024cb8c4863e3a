from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Include request/version metadata for consistent client tracing.
    request_id: str
    api_version: str = Field(default=API_VERSION)
    # Present whenever the request carries a browser session.
    csrf_token: str | None = None


class ErrorDetail(BaseModel):
    # Standardize error codes/messages with optional structured details.
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    # Wrap successful responses in a consistent envelope.
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    # Wrap error responses in a consistent envelope.
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def _meta(request: Request) -> ResponseMeta:
    csrf_token = None
    if "session" in request.scope:
        csrf_token = request.session.get("csrf_token")
    return ResponseMeta(request_id=get_request_id(request), csrf_token=csrf_token)


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Return the standard success envelope for every versioned route.
    meta = _meta(request)
    return {"data": jsonable_encoder(data), "meta": meta.model_dump(exclude_none=True)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Error bodies never echo the CSRF token; only the request id is shared.
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=jsonable_encoder(details))
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump(exclude_none=True)}
