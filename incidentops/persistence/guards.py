from __future__ import annotations

from dataclasses import dataclass

from incidentops.core.config import get_settings


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface missing tenant predicates when guard enforcement is enabled.
    message: str


def require_tenant_id(tenant_id: str | None) -> str:
    # Enforce non-empty tenant identifiers before any tenant-scoped storage access.
    settings = get_settings()
    if settings.authz_require_tenant_predicate and not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")
    return tenant_id or ""


def tenant_predicate(model, tenant_id: str | None) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id
