from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from starlette.requests import Request

from incidentops.core.config import Settings, get_settings
from incidentops.domain.entities import AuditLogEvent
from incidentops.persistence.repos.base import AuditLogRepository, TenantRepository
from incidentops.services.pagination import CursorCodec, Page, normalize_limit
from incidentops.services.tenancy import TenantIsolationGuard


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields and drop nulls while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            if raw_value is None:
                continue
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def email_domain(email: str) -> str | None:
    # Audit rows keep only the domain; the local part identifies a person.
    _, sep, domain = email.strip().lower().rpartition("@")
    return domain if sep and domain else None


@dataclass(frozen=True)
class RequestContext:
    trace_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def get_request_context(request: Request | None) -> RequestContext:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return RequestContext()
    trace_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent") or None
    return RequestContext(trace_id=trace_id, ip_address=ip_address, user_agent=user_agent)


@dataclass(frozen=True)
class AuditEvent:
    action: str
    tenant_id: str | None = None
    actor_user_id: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    context: RequestContext = field(default_factory=RequestContext)


class AuditService:
    def __init__(
        self,
        repository: AuditLogRepository,
        *,
        time_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repository = repository
        self._now = time_provider

    async def record(self, event: AuditEvent) -> AuditLogEvent:
        return await self._repository.create_event(
            tenant_id=event.tenant_id,
            actor_user_id=event.actor_user_id,
            action=event.action,
            target_type=event.target_type,
            target_id=event.target_id,
            metadata=sanitize_metadata(dict(event.metadata)),
            trace_id=event.context.trace_id,
            ip_address=event.context.ip_address,
            user_agent=event.context.user_agent,
            now=self._now(),
        )

    async def record_safely(self, event: AuditEvent) -> AuditLogEvent | None:
        # Audit trail outages must never fail the business operation that triggered them.
        try:
            return await self.record(event)
        except Exception as exc:  # noqa: BLE001 - audit failures are non-fatal
            logger.warning(
                "audit_log_write_failed action=%s tenant_id=%s error=%s",
                event.action,
                event.tenant_id,
                type(exc).__name__,
            )
            return None


class AuditLogQueryService:
    def __init__(
        self,
        repository: AuditLogRepository,
        tenants: TenantRepository,
        codec: CursorCodec,
        *,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._repository = repository
        self._guard = TenantIsolationGuard(tenants)
        self._codec = codec
        self._default_limit = settings.audit_list_default_limit
        self._max_limit = settings.audit_list_max_limit

    async def list_events(
        self,
        *,
        user_id: str,
        tenant_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[AuditLogEvent]:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "audit_log.read")
        normalized_limit = normalize_limit(
            limit, default=self._default_limit, maximum=self._max_limit
        )
        after = self._codec.decode(cursor)
        events = await self._repository.list_events(
            tenant_id=tenant_id, limit=normalized_limit, after=after
        )
        return self._codec.page(events, normalized_limit)
