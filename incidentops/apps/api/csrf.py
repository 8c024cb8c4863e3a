from __future__ import annotations

import hmac
import secrets

from fastapi import Depends, Request

from incidentops.apps.api.deps import get_auth_context, get_runtime
from incidentops.core.errors import PermissionDenied
from incidentops.runtime import Runtime
from incidentops.services.auth.context import AuthContext, is_safe_method


_SESSION_KEY = "csrf_token"


def issue_csrf_token(request: Request) -> str:
    # One token per session, created on first need and kept until the session resets.
    token = request.session.get(_SESSION_KEY)
    if isinstance(token, str) and token:
        return token
    token = secrets.token_urlsafe(32)
    request.session[_SESSION_KEY] = token
    return token


async def enforce_csrf(
    request: Request,
    context: AuthContext | None = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
) -> None:
    if is_safe_method(request.method):
        issue_csrf_token(request)
        return
    # API keys are never sent by browsers automatically, so they carry no CSRF risk.
    if context is not None and context.is_api_key:
        return
    expected = request.session.get(_SESSION_KEY)
    received = request.headers.get(runtime.settings.csrf_header)
    if (
        not isinstance(expected, str)
        or not expected
        or not received
        or not hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
    ):
        raise PermissionDenied("CSRF token missing or invalid.", code="CSRF_TOKEN_INVALID")
