from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from incidentops.core.config import Settings, get_settings
from incidentops.persistence.repos.base import Repositories
from incidentops.persistence.repos.factory import build_repositories
from incidentops.services.audit import AuditLogQueryService, AuditService
from incidentops.services.auth.api_keys import ApiKeyService
from incidentops.services.auth.passwords import PasswordHasher
from incidentops.services.auth.principal import PrincipalResolver
from incidentops.services.auth.service import AuthService
from incidentops.services.incidents import IncidentService
from incidentops.services.pagination import CursorCodec
from incidentops.services.quota import UsageService
from incidentops.services.tenancy import TenantService


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Runtime:
    # One wired object graph per app; shared by every request.
    settings: Settings
    repositories: Repositories
    auth: AuthService
    tenants: TenantService
    incidents: IncidentService
    api_keys: ApiKeyService
    usage: UsageService
    audit: AuditService
    audit_log: AuditLogQueryService
    principals: PrincipalResolver


def build_runtime(
    settings: Settings | None = None,
    repositories: Repositories | None = None,
    *,
    hasher: PasswordHasher | None = None,
    time_provider: Callable[[], datetime] = _utc_now,
) -> Runtime:
    settings = settings or get_settings()
    repositories = repositories or build_repositories(settings)
    codec = CursorCodec(settings.cursor_secret)
    api_keys = ApiKeyService(repositories.api_keys, repositories.tenants, time_provider=time_provider)
    return Runtime(
        settings=settings,
        repositories=repositories,
        auth=AuthService(
            repositories.auth, settings=settings, hasher=hasher, time_provider=time_provider
        ),
        tenants=TenantService(
            repositories.tenants, repositories.auth, settings=settings, time_provider=time_provider
        ),
        incidents=IncidentService(
            repositories.incidents,
            repositories.tenants,
            codec,
            settings=settings,
            time_provider=time_provider,
        ),
        api_keys=api_keys,
        usage=UsageService(
            repositories.usage, repositories.tenants, settings=settings, time_provider=time_provider
        ),
        audit=AuditService(repositories.audit, time_provider=time_provider),
        audit_log=AuditLogQueryService(
            repositories.audit, repositories.tenants, codec, settings=settings
        ),
        principals=PrincipalResolver(api_keys),
    )
