from __future__ import annotations

from datetime import datetime, timezone

from incidentops.domain import entities
from incidentops.domain import models


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on read; every timestamp is stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def user_from_row(row: models.User) -> entities.User:
    return entities.User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        password_updated_at=as_utc(row.password_updated_at),
        failed_login_attempts=row.failed_login_attempts or 0,
        lockout_until=as_utc(row.lockout_until),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def tenant_from_row(row: models.Tenant) -> entities.Tenant:
    return entities.Tenant(
        id=row.id,
        name=row.name,
        slug=row.slug,
        created_by_user_id=row.created_by_user_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def membership_from_row(row: models.Membership) -> entities.Membership:
    return entities.Membership(
        id=row.id,
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        role=row.role,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def invite_from_row(row: models.TenantInvite) -> entities.TenantInvite:
    return entities.TenantInvite(
        id=row.id,
        tenant_id=row.tenant_id,
        email=row.email,
        role=row.role,
        token_hash=row.token_hash,
        invited_by_user_id=row.invited_by_user_id,
        expires_at=as_utc(row.expires_at),
        accepted_at=as_utc(row.accepted_at),
        accepted_by_user_id=row.accepted_by_user_id,
        created_at=as_utc(row.created_at),
    )


def incident_from_row(row: models.Incident, services: tuple[str, ...]) -> entities.Incident:
    return entities.Incident(
        id=row.id,
        tenant_id=row.tenant_id,
        title=row.title,
        description=row.description or "",
        severity=row.severity,
        status=row.status,
        start_time=as_utc(row.start_time),
        end_time=as_utc(row.end_time),
        declared_by_user_id=row.declared_by_user_id,
        impacted_services=services,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def timeline_event_from_row(row: models.TimelineEvent) -> entities.TimelineEvent:
    return entities.TimelineEvent(
        id=row.id,
        tenant_id=row.tenant_id,
        incident_id=row.incident_id,
        event_time=as_utc(row.event_time),
        event_type=row.event_type,
        message=row.message,
        created_by_user_id=row.created_by_user_id,
        created_at=as_utc(row.created_at),
    )


def task_from_row(row: models.IncidentTask) -> entities.IncidentTask:
    return entities.IncidentTask(
        id=row.id,
        tenant_id=row.tenant_id,
        incident_id=row.incident_id,
        title=row.title,
        description=row.description or "",
        status=row.status,
        assignee_user_id=row.assignee_user_id,
        due_at=as_utc(row.due_at),
        created_by_user_id=row.created_by_user_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def status_update_from_row(row: models.StatusUpdate) -> entities.StatusUpdate:
    return entities.StatusUpdate(
        id=row.id,
        tenant_id=row.tenant_id,
        incident_id=row.incident_id,
        audience=row.audience,
        message=row.message,
        created_by_user_id=row.created_by_user_id,
        published_at=as_utc(row.published_at),
        created_at=as_utc(row.created_at),
    )


def service_account_from_row(row: models.ServiceAccount) -> entities.ServiceAccount:
    return entities.ServiceAccount(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        owner_user_id=row.owner_user_id,
        created_by_user_id=row.created_by_user_id,
        revoked_at=as_utc(row.revoked_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def api_key_from_row(row: models.ApiKey) -> entities.ApiKeyRecord:
    return entities.ApiKeyRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        service_account_id=row.service_account_id,
        name=row.name,
        key_prefix=row.key_prefix,
        scopes=tuple(row.scopes or ()),
        created_by_user_id=row.created_by_user_id,
        last_used_at=as_utc(row.last_used_at),
        revoked_at=as_utc(row.revoked_at),
        created_at=as_utc(row.created_at),
    )


def quota_from_row(row: models.TenantUsageQuota) -> entities.TenantUsageQuota:
    return entities.TenantUsageQuota(
        tenant_id=row.tenant_id,
        daily_write_limit=row.daily_write_limit,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def usage_event_from_row(row: models.UsageEvent) -> entities.UsageEvent:
    return entities.UsageEvent(
        id=row.id,
        tenant_id=row.tenant_id,
        actor_user_id=row.actor_user_id,
        api_key_id=row.api_key_id,
        metric=row.metric,
        amount=row.amount,
        route=row.route,
        trace_id=row.trace_id,
        created_at=as_utc(row.created_at),
    )


def audit_event_from_row(row: models.AuditLogEvent) -> entities.AuditLogEvent:
    return entities.AuditLogEvent(
        id=row.id,
        tenant_id=row.tenant_id,
        actor_user_id=row.actor_user_id,
        action=row.action,
        target_type=row.target_type,
        target_id=row.target_id,
        metadata=dict(row.metadata_json or {}),
        trace_id=row.trace_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=as_utc(row.created_at),
    )
