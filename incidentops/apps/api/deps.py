from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Depends, Request

from incidentops.apps.api.response import get_request_id
from incidentops.core.errors import AuthenticationRequired, PermissionDenied
from incidentops.runtime import Runtime
from incidentops.services.audit import RequestContext, get_request_context
from incidentops.services.auth.context import AuthContext
from incidentops.services.quota import UsageSummary
from incidentops.services.tenancy import resolve_active_tenant


SESSION_USER_KEY = "user_id"
SESSION_TENANT_KEY = "active_tenant_id"


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


async def get_auth_context(
    request: Request, runtime: Runtime = Depends(get_runtime)
) -> AuthContext | None:
    # Resolved once per request; FastAPI caches the result for every dependent.
    return await runtime.principals.resolve(
        method=request.method,
        api_key=request.headers.get(runtime.settings.api_key_header),
        session_user_id=request.session.get(SESSION_USER_KEY),
        session_tenant_id=request.session.get(SESSION_TENANT_KEY),
    )


async def require_auth_context(
    context: AuthContext | None = Depends(get_auth_context),
) -> AuthContext:
    if context is None:
        raise AuthenticationRequired("Authentication is required.")
    return context


async def require_session_context(
    context: AuthContext = Depends(require_auth_context),
) -> AuthContext:
    # Tenant and credential management stay with humans holding a browser session.
    if context.is_api_key:
        raise PermissionDenied("Session authentication is required for this operation.")
    return context


async def get_active_tenant_id(
    request: Request, context: AuthContext = Depends(require_auth_context)
) -> str:
    return resolve_active_tenant(context, request.session.get(SESSION_TENANT_KEY))


def get_audit_context(request: Request) -> RequestContext:
    get_request_id(request)
    return get_request_context(request)


def write_quota(route: str) -> Callable[..., Awaitable[UsageSummary]]:
    # Runs as a route dependency, so the write is charged before the body is validated.
    async def consume_write_quota(
        request: Request,
        context: AuthContext = Depends(require_auth_context),
        tenant_id: str = Depends(get_active_tenant_id),
        runtime: Runtime = Depends(get_runtime),
    ) -> UsageSummary:
        return await runtime.usage.consume_write_quota(
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            api_key_id=context.api_key_id,
            route=route,
            trace_id=get_request_id(request),
        )

    return consume_write_quota
