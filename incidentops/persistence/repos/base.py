from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Iterable, Protocol

from incidentops.domain.entities import (
    AcceptedInvite,
    ApiKeyAuthRecord,
    ApiKeyRecord,
    AuditLogEvent,
    Incident,
    IncidentTask,
    Membership,
    ServiceAccount,
    StatusUpdate,
    TenantInvite,
    TenantMembership,
    TenantUsageQuota,
    TimelineEvent,
    UsageEvent,
    User,
)


class _Unset:
    # Distinguish "field omitted" from an explicit null in partial updates.
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class PagePosition:
    # Last row of the previous page under (created_at DESC, id DESC) ordering.
    created_at: datetime
    id: str


@dataclass(frozen=True)
class _Changes:
    def provided(self) -> dict[str, Any]:
        # Return only the fields the caller actually set.
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not UNSET
        }


@dataclass(frozen=True)
class IncidentChanges(_Changes):
    title: Any = UNSET
    description: Any = UNSET
    severity: Any = UNSET
    status: Any = UNSET
    end_time: Any = UNSET
    impacted_services: Any = UNSET


@dataclass(frozen=True)
class TaskChanges(_Changes):
    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    assignee_user_id: Any = UNSET
    due_at: Any = UNSET


def normalize_services(services: Iterable[str]) -> tuple[str, ...]:
    # Impacted services form a trimmed, deduplicated, order-insensitive set.
    return tuple(sorted({value.strip() for value in services if value and value.strip()}))


def is_after_position(created_at: datetime, row_id: str, position: PagePosition | None) -> bool:
    # True when the row sorts strictly after the cursor row in DESC order.
    if position is None:
        return True
    if created_at != position.created_at:
        return created_at < position.created_at
    return row_id < position.id


class AuthRepository(Protocol):
    async def create_user(self, *, email: str, password_hash: str, now: datetime) -> User:
        ...

    async def find_user_by_id(self, user_id: str) -> User | None:
        ...

    async def find_user_by_email(self, email: str) -> User | None:
        ...

    async def update_user_password(
        self, user_id: str, password_hash: str, password_updated_at: datetime
    ) -> None:
        ...

    async def record_failed_login(
        self, user_id: str, failed_login_attempts: int, lockout_until: datetime | None
    ) -> None:
        ...

    async def clear_failed_login_state(self, user_id: str) -> None:
        ...

    async def create_password_reset_token(
        self, *, user_id: str, token_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        ...

    async def consume_password_reset_token(self, token_hash: str, now: datetime) -> User | None:
        ...

    async def purge_expired_password_reset_tokens(self, now: datetime) -> None:
        ...


class TenantRepository(Protocol):
    async def create_tenant_with_owner(
        self, *, name: str, slug: str, owner_user_id: str, now: datetime
    ) -> TenantMembership:
        ...

    async def list_memberships_for_user(self, user_id: str) -> list[TenantMembership]:
        ...

    async def get_membership(self, tenant_id: str, user_id: str) -> Membership | None:
        ...

    async def create_invite(
        self,
        *,
        tenant_id: str,
        email: str,
        role: str,
        invited_by_user_id: str,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> TenantInvite:
        ...

    async def accept_invite(
        self, *, token_hash: str, user_id: str, user_email: str, now: datetime
    ) -> AcceptedInvite | None:
        ...


class IncidentRepository(Protocol):
    async def create_incident(
        self,
        *,
        tenant_id: str,
        user_id: str,
        title: str,
        description: str,
        severity: str,
        start_time: datetime,
        impacted_services: Iterable[str],
        now: datetime,
    ) -> Incident:
        ...

    async def list_incidents(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[Incident]:
        ...

    async def find_incident(self, *, tenant_id: str, incident_id: str) -> Incident | None:
        ...

    async def update_incident(
        self, *, tenant_id: str, incident_id: str, changes: IncidentChanges, now: datetime
    ) -> Incident | None:
        ...

    async def create_timeline_event(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        user_id: str,
        event_time: datetime,
        event_type: str,
        message: str,
        now: datetime,
    ) -> TimelineEvent:
        ...

    async def list_timeline_events(self, *, tenant_id: str, incident_id: str) -> list[TimelineEvent]:
        ...

    async def create_task(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        user_id: str,
        title: str,
        description: str,
        assignee_user_id: str | None,
        due_at: datetime | None,
        now: datetime,
    ) -> IncidentTask:
        ...

    async def find_task(
        self, *, tenant_id: str, incident_id: str, task_id: str
    ) -> IncidentTask | None:
        ...

    async def update_task(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        task_id: str,
        changes: TaskChanges,
        now: datetime,
    ) -> IncidentTask | None:
        ...

    async def list_tasks(self, *, tenant_id: str, incident_id: str) -> list[IncidentTask]:
        ...

    async def create_status_update(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        user_id: str,
        audience: str,
        message: str,
        published_at: datetime,
        now: datetime,
    ) -> StatusUpdate:
        ...

    async def list_status_updates(self, *, tenant_id: str, incident_id: str) -> list[StatusUpdate]:
        ...


class ApiKeyRepository(Protocol):
    async def create_service_account(
        self,
        *,
        tenant_id: str,
        name: str,
        owner_user_id: str,
        created_by_user_id: str,
        now: datetime,
    ) -> ServiceAccount:
        ...

    async def list_service_accounts(self, *, tenant_id: str) -> list[ServiceAccount]:
        ...

    async def find_service_account(
        self, *, tenant_id: str, service_account_id: str
    ) -> ServiceAccount | None:
        ...

    async def create_api_key(
        self,
        *,
        tenant_id: str,
        service_account_id: str,
        name: str,
        key_prefix: str,
        key_hash: str,
        scopes: Iterable[str],
        created_by_user_id: str,
        now: datetime,
    ) -> ApiKeyRecord:
        ...

    async def list_api_keys(self, *, tenant_id: str) -> list[ApiKeyRecord]:
        ...

    async def find_api_key(self, *, tenant_id: str, api_key_id: str) -> ApiKeyRecord | None:
        ...

    async def revoke_api_key(
        self, *, tenant_id: str, api_key_id: str, revoked_at: datetime
    ) -> ApiKeyRecord | None:
        ...

    async def find_active_api_key_by_hash(self, key_hash: str) -> ApiKeyAuthRecord | None:
        ...

    async def mark_api_key_used(self, *, tenant_id: str, api_key_id: str, used_at: datetime) -> None:
        ...


class UsageRepository(Protocol):
    async def upsert_tenant_quota(
        self, *, tenant_id: str, daily_write_limit: int, now: datetime
    ) -> TenantUsageQuota:
        ...

    async def get_tenant_quota(self, *, tenant_id: str) -> TenantUsageQuota | None:
        ...

    async def sum_usage_since(self, *, tenant_id: str, metric: str, since: datetime) -> int:
        ...

    async def create_usage_event(
        self,
        *,
        tenant_id: str,
        actor_user_id: str | None,
        api_key_id: str | None,
        metric: str,
        amount: int,
        route: str,
        trace_id: str | None,
        created_at: datetime,
    ) -> UsageEvent:
        ...


class AuditLogRepository(Protocol):
    async def create_event(
        self,
        *,
        tenant_id: str | None,
        actor_user_id: str | None,
        action: str,
        target_type: str | None,
        target_id: str | None,
        metadata: dict[str, Any],
        trace_id: str | None,
        ip_address: str | None,
        user_agent: str | None,
        now: datetime,
    ) -> AuditLogEvent:
        ...

    async def list_events(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[AuditLogEvent]:
        ...


@dataclass(frozen=True)
class Repositories:
    # Bundle one implementation of every repository behind a single handle.
    auth: AuthRepository
    tenants: TenantRepository
    incidents: IncidentRepository
    api_keys: ApiKeyRepository
    usage: UsageRepository
    audit: AuditLogRepository
