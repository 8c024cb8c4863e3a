from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from incidentops.apps.api.errors import (
    incidentops_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from incidentops.apps.api.response import API_VERSION
from incidentops.apps.api.routes.api_keys import router as api_keys_router
from incidentops.apps.api.routes.audit import router as audit_router
from incidentops.apps.api.routes.auth import router as auth_router
from incidentops.apps.api.routes.health import router as health_router
from incidentops.apps.api.routes.incidents import router as incidents_router
from incidentops.apps.api.routes.tenants import router as tenants_router
from incidentops.apps.api.routes.usage import router as usage_router
from incidentops.core.config import Settings, get_settings
from incidentops.core.errors import IncidentOpsError
from incidentops.core.logging import configure_logging
from incidentops.persistence.guards import TenantPredicateError
from incidentops.runtime import Runtime, build_runtime


logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, runtime: Runtime | None = None) -> FastAPI:
    settings = settings or (runtime.settings if runtime is not None else get_settings())
    configure_logging()
    app = FastAPI(title="IncidentOps API", version=API_VERSION)
    app.state.runtime = runtime or build_runtime(settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            extra={"request_id": request_id},
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(IncidentOpsError)
    async def _incidentops_exception_handler(request: Request, exc: IncidentOpsError):
        return await incidentops_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(auth_router, prefix=f"/{API_VERSION}")
    app.include_router(tenants_router, prefix=f"/{API_VERSION}")
    # Service accounts and API keys hang off /tenants/{tenant_id}.
    app.include_router(api_keys_router, prefix=f"/{API_VERSION}")
    app.include_router(incidents_router, prefix=f"/{API_VERSION}")
    app.include_router(usage_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")

    # Added last so the session is decoded before any route dependency runs.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age_s,
        same_site="lax",
        https_only=settings.session_cookie_secure,
    )
    return app


app = create_app()
