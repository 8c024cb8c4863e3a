from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, get_args


OrgRole = Literal["Owner", "Admin", "Responder", "Viewer", "Billing"]
IncidentRole = Literal["IC", "CL", "OL", "SME"]
IncidentSeverity = Literal["SEV1", "SEV2", "SEV3", "SEV4"]
IncidentStatus = Literal[
    "declared",
    "investigating",
    "mitigating",
    "monitoring",
    "resolved",
    "closed",
]
TaskStatus = Literal["open", "in_progress", "completed"]
StatusUpdateAudience = Literal["internal", "external"]
ApiKeyScope = Literal["read", "write"]
AuthKind = Literal["session", "api_key"]

ORG_ROLES: tuple[str, ...] = get_args(OrgRole)
INCIDENT_ROLES: tuple[str, ...] = get_args(IncidentRole)
INCIDENT_SEVERITIES: tuple[str, ...] = get_args(IncidentSeverity)
INCIDENT_STATUSES: tuple[str, ...] = get_args(IncidentStatus)
TASK_STATUSES: tuple[str, ...] = get_args(TaskStatus)
STATUS_UPDATE_AUDIENCES: tuple[str, ...] = get_args(StatusUpdateAudience)
API_KEY_SCOPES: tuple[str, ...] = get_args(ApiKeyScope)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    password_hash: str
    password_updated_at: datetime
    failed_login_attempts: int
    lockout_until: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    slug: str
    created_by_user_id: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Membership:
    id: str
    tenant_id: str
    user_id: str
    role: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TenantMembership:
    # Pair a tenant with the caller's membership for tenant pickers and switch flows.
    tenant: Tenant
    membership: Membership


@dataclass(frozen=True)
class TenantInvite:
    id: str
    tenant_id: str
    email: str
    role: str
    token_hash: str
    invited_by_user_id: str
    expires_at: datetime
    accepted_at: datetime | None
    accepted_by_user_id: str | None
    created_at: datetime


@dataclass(frozen=True)
class AcceptedInvite:
    tenant: Tenant
    membership: Membership
    invite: TenantInvite


@dataclass(frozen=True)
class Incident:
    id: str
    tenant_id: str
    title: str
    description: str
    severity: str
    status: str
    start_time: datetime
    end_time: datetime | None
    declared_by_user_id: str
    impacted_services: tuple[str, ...]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    tenant_id: str
    incident_id: str
    event_time: datetime
    event_type: str
    message: str
    created_by_user_id: str
    created_at: datetime


@dataclass(frozen=True)
class IncidentTask:
    id: str
    tenant_id: str
    incident_id: str
    title: str
    description: str
    status: str
    assignee_user_id: str | None
    due_at: datetime | None
    created_by_user_id: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class StatusUpdate:
    id: str
    tenant_id: str
    incident_id: str
    audience: str
    message: str
    created_by_user_id: str
    published_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class ServiceAccount:
    id: str
    tenant_id: str
    name: str
    owner_user_id: str
    created_by_user_id: str
    revoked_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ApiKeyRecord:
    id: str
    tenant_id: str
    service_account_id: str
    name: str
    key_prefix: str
    scopes: tuple[str, ...]
    created_by_user_id: str
    last_used_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class ApiKeyAuthRecord:
    # Active key joined with its owning service account for principal resolution.
    api_key: ApiKeyRecord
    service_account: ServiceAccount


@dataclass(frozen=True)
class TenantUsageQuota:
    tenant_id: str
    daily_write_limit: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UsageEvent:
    id: str
    tenant_id: str
    actor_user_id: str | None
    api_key_id: str | None
    metric: str
    amount: int
    route: str
    trace_id: str | None
    created_at: datetime


@dataclass(frozen=True)
class AuditLogEvent:
    id: str
    tenant_id: str | None
    actor_user_id: str | None
    action: str
    target_type: str | None
    target_id: str | None
    metadata: dict[str, Any]
    trace_id: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
