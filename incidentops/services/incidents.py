from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable

from incidentops.core.config import Settings, get_settings
from incidentops.core.errors import NotFound
from incidentops.domain.entities import Incident, IncidentTask, StatusUpdate, TimelineEvent
from incidentops.persistence.repos.base import (
    UNSET,
    IncidentChanges,
    IncidentRepository,
    TaskChanges,
    TenantRepository,
)
from incidentops.services.authz.policy import PolicySubject, assert_authorized
from incidentops.services.lifecycle import ensure_transition, required_actions
from incidentops.services.pagination import CursorCodec, Page, normalize_limit
from incidentops.services.tenancy import TenantIsolationGuard


logger = logging.getLogger(__name__)

_INCIDENT_NOT_FOUND = ("INCIDENT_NOT_FOUND", "Incident not found.")
_TASK_NOT_FOUND = ("TASK_NOT_FOUND", "Task not found.")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IncidentService:
    """Incident workflows for one tenant at a time.

    Each operation checks membership, then resolves its target inside the
    tenant, then evaluates policy. A missing target therefore always wins over
    a missing permission.
    """

    def __init__(
        self,
        incidents: IncidentRepository,
        tenants: TenantRepository,
        codec: CursorCodec,
        *,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        settings = settings or get_settings()
        self._incidents = incidents
        self._guard = TenantIsolationGuard(tenants)
        self._codec = codec
        self._default_limit = settings.incidents_list_default_limit
        self._max_limit = settings.incidents_list_max_limit
        self._now = time_provider

    async def _load_incident(self, tenant_id: str, incident_id: str) -> Incident:
        code, message = _INCIDENT_NOT_FOUND
        return await self._guard.load_scoped(
            lambda: self._incidents.find_incident(tenant_id=tenant_id, incident_id=incident_id),
            not_found_code=code,
            not_found_message=message,
        )

    async def _resolve_incident(
        self, subject: PolicySubject, tenant_id: str, incident_id: str, *actions: str
    ) -> Incident:
        code, message = _INCIDENT_NOT_FOUND
        return await self._guard.resolve_then_authorize(
            subject,
            lambda: self._incidents.find_incident(tenant_id=tenant_id, incident_id=incident_id),
            actions,
            not_found_code=code,
            not_found_message=message,
        )

    async def create_incident(
        self,
        *,
        user_id: str,
        tenant_id: str,
        title: str,
        description: str,
        severity: str,
        start_time: datetime,
        impacted_services: Iterable[str] = (),
    ) -> Incident:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "incidents.create")
        incident = await self._incidents.create_incident(
            tenant_id=tenant_id,
            user_id=user_id,
            title=title,
            description=description,
            severity=severity,
            start_time=start_time,
            impacted_services=impacted_services,
            now=self._now(),
        )
        logger.info(
            "incident_declared tenant_id=%s incident_id=%s severity=%s",
            tenant_id,
            incident.id,
            incident.severity,
        )
        return incident

    async def list_incidents(
        self,
        *,
        user_id: str,
        tenant_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[Incident]:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "incidents.read")
        normalized_limit = normalize_limit(
            limit, default=self._default_limit, maximum=self._max_limit
        )
        after = self._codec.decode(cursor)
        incidents = await self._incidents.list_incidents(
            tenant_id=tenant_id, limit=normalized_limit, after=after
        )
        return self._codec.page(incidents, normalized_limit)

    async def get_incident(self, *, user_id: str, tenant_id: str, incident_id: str) -> Incident:
        subject = await self._guard.member_subject(user_id, tenant_id)
        return await self._resolve_incident(subject, tenant_id, incident_id, "incidents.read")

    async def update_incident(
        self,
        *,
        user_id: str,
        tenant_id: str,
        incident_id: str,
        changes: IncidentChanges,
    ) -> Incident:
        subject = await self._guard.member_subject(user_id, tenant_id)
        current = await self._load_incident(tenant_id, incident_id)
        # Lifecycle errors are reported before permissions, on a confirmed in-tenant target.
        if changes.status is not UNSET:
            ensure_transition(current.status, changes.status)
        for action in required_actions(current, changes):
            assert_authorized(action, subject)

        updated = await self._incidents.update_incident(
            tenant_id=tenant_id, incident_id=incident_id, changes=changes, now=self._now()
        )
        if updated is None:
            code, message = _INCIDENT_NOT_FOUND
            raise NotFound(message, code=code)
        if updated.status != current.status:
            logger.info(
                "incident_status_changed tenant_id=%s incident_id=%s from=%s to=%s",
                tenant_id,
                incident_id,
                current.status,
                updated.status,
            )
        return updated

    async def add_timeline_event(
        self,
        *,
        user_id: str,
        tenant_id: str,
        incident_id: str,
        event_time: datetime,
        event_type: str,
        message: str,
    ) -> TimelineEvent:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._resolve_incident(subject, tenant_id, incident_id, "timeline.add_event")
        return await self._incidents.create_timeline_event(
            tenant_id=tenant_id,
            incident_id=incident_id,
            user_id=user_id,
            event_time=event_time,
            event_type=event_type,
            message=message,
            now=self._now(),
        )

    async def list_timeline_events(
        self, *, user_id: str, tenant_id: str, incident_id: str
    ) -> list[TimelineEvent]:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._resolve_incident(subject, tenant_id, incident_id, "incidents.read")
        return await self._incidents.list_timeline_events(tenant_id=tenant_id, incident_id=incident_id)

    async def create_task(
        self,
        *,
        user_id: str,
        tenant_id: str,
        incident_id: str,
        title: str,
        description: str = "",
        assignee_user_id: str | None = None,
        due_at: datetime | None = None,
    ) -> IncidentTask:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._resolve_incident(subject, tenant_id, incident_id, "tasks.create")
        return await self._incidents.create_task(
            tenant_id=tenant_id,
            incident_id=incident_id,
            user_id=user_id,
            title=title,
            description=description,
            assignee_user_id=assignee_user_id,
            due_at=due_at,
            now=self._now(),
        )

    async def update_task(
        self,
        *,
        user_id: str,
        tenant_id: str,
        incident_id: str,
        task_id: str,
        changes: TaskChanges,
    ) -> IncidentTask:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._load_incident(tenant_id, incident_id)
        code, message = _TASK_NOT_FOUND
        await self._guard.resolve_then_authorize(
            subject,
            lambda: self._incidents.find_task(
                tenant_id=tenant_id, incident_id=incident_id, task_id=task_id
            ),
            ("tasks.assign",),
            not_found_code=code,
            not_found_message=message,
        )
        updated = await self._incidents.update_task(
            tenant_id=tenant_id,
            incident_id=incident_id,
            task_id=task_id,
            changes=changes,
            now=self._now(),
        )
        if updated is None:
            raise NotFound(message, code=code)
        return updated

    async def list_tasks(
        self, *, user_id: str, tenant_id: str, incident_id: str
    ) -> list[IncidentTask]:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._resolve_incident(subject, tenant_id, incident_id, "incidents.read")
        return await self._incidents.list_tasks(tenant_id=tenant_id, incident_id=incident_id)

    async def create_status_update(
        self,
        *,
        user_id: str,
        tenant_id: str,
        incident_id: str,
        audience: str,
        message: str,
        published_at: datetime | None = None,
    ) -> StatusUpdate:
        subject = await self._guard.member_subject(user_id, tenant_id)
        action = "updates.publish_external" if audience == "external" else "updates.publish_internal"
        await self._resolve_incident(subject, tenant_id, incident_id, action)
        now = self._now()
        return await self._incidents.create_status_update(
            tenant_id=tenant_id,
            incident_id=incident_id,
            user_id=user_id,
            audience=audience,
            message=message,
            published_at=published_at or now,
            now=now,
        )

    async def list_status_updates(
        self, *, user_id: str, tenant_id: str, incident_id: str
    ) -> list[StatusUpdate]:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._resolve_incident(subject, tenant_id, incident_id, "incidents.read")
        return await self._incidents.list_status_updates(tenant_id=tenant_id, incident_id=incident_id)
