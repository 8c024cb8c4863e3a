from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.core.config import Settings, get_settings
from incidentops.persistence.db import get_sessionmaker
from incidentops.persistence.repos.base import Repositories
from incidentops.persistence.repos.memory.api_keys import InMemoryApiKeyRepository
from incidentops.persistence.repos.memory.audit import InMemoryAuditLogRepository
from incidentops.persistence.repos.memory.auth import InMemoryAuthRepository
from incidentops.persistence.repos.memory.incidents import InMemoryIncidentRepository
from incidentops.persistence.repos.memory.tenants import InMemoryTenantRepository
from incidentops.persistence.repos.memory.usage import InMemoryUsageRepository
from incidentops.persistence.repos.sql.api_keys import SqlApiKeyRepository
from incidentops.persistence.repos.sql.audit import SqlAuditLogRepository
from incidentops.persistence.repos.sql.auth import SqlAuthRepository
from incidentops.persistence.repos.sql.incidents import SqlIncidentRepository
from incidentops.persistence.repos.sql.tenants import SqlTenantRepository
from incidentops.persistence.repos.sql.usage import SqlUsageRepository


def build_memory_repositories() -> Repositories:
    return Repositories(
        auth=InMemoryAuthRepository(),
        tenants=InMemoryTenantRepository(),
        incidents=InMemoryIncidentRepository(),
        api_keys=InMemoryApiKeyRepository(),
        usage=InMemoryUsageRepository(),
        audit=InMemoryAuditLogRepository(),
    )


def build_sql_repositories(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    return Repositories(
        auth=SqlAuthRepository(session_factory),
        tenants=SqlTenantRepository(session_factory),
        incidents=SqlIncidentRepository(session_factory),
        api_keys=SqlApiKeyRepository(session_factory),
        usage=SqlUsageRepository(session_factory),
        audit=SqlAuditLogRepository(session_factory),
    )


def build_repositories(settings: Settings | None = None) -> Repositories:
    settings = settings or get_settings()
    backend = (settings.storage_backend or "memory").lower()

    if backend == "memory":
        return build_memory_repositories()
    if backend in {"sql", "postgres"}:
        return build_sql_repositories(get_sessionmaker())
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")
