from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable
from uuid import uuid4

from incidentops.domain.entities import Incident, IncidentTask, StatusUpdate, TimelineEvent
from incidentops.persistence.guards import require_tenant_id
from incidentops.persistence.repos.base import (
    IncidentChanges,
    PagePosition,
    TaskChanges,
    is_after_position,
    normalize_services,
)


class InMemoryIncidentRepository:
    def __init__(self) -> None:
        self._incidents: dict[str, Incident] = {}
        self._timeline: dict[str, list[TimelineEvent]] = {}
        self._tasks: dict[str, dict[str, IncidentTask]] = {}
        self._status_updates: dict[str, list[StatusUpdate]] = {}

    def _scoped_incident(self, tenant_id: str, incident_id: str) -> Incident | None:
        # Ids alone never resolve a record; the tenant must match too.
        require_tenant_id(tenant_id)
        incident = self._incidents.get(incident_id)
        if incident is None or incident.tenant_id != tenant_id:
            return None
        return incident

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
        require_tenant_id(tenant_id)
        incident = Incident(
            id=str(uuid4()),
            tenant_id=tenant_id,
            title=title,
            description=description,
            severity=severity,
            status="declared",
            start_time=start_time,
            end_time=None,
            declared_by_user_id=user_id,
            impacted_services=normalize_services(impacted_services),
            created_at=now,
            updated_at=now,
        )
        self._incidents[incident.id] = incident
        return incident

    async def list_incidents(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[Incident]:
        require_tenant_id(tenant_id)
        rows = [
            incident
            for incident in self._incidents.values()
            if incident.tenant_id == tenant_id
            and is_after_position(incident.created_at, incident.id, after)
        ]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return rows[:limit]

    async def find_incident(self, *, tenant_id: str, incident_id: str) -> Incident | None:
        return self._scoped_incident(tenant_id, incident_id)

    async def update_incident(
        self, *, tenant_id: str, incident_id: str, changes: IncidentChanges, now: datetime
    ) -> Incident | None:
        incident = self._scoped_incident(tenant_id, incident_id)
        if incident is None:
            return None
        values = changes.provided()
        if "impacted_services" in values:
            values["impacted_services"] = normalize_services(values["impacted_services"])
        updated = replace(incident, **values, updated_at=now)
        self._incidents[incident_id] = updated
        return updated

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
        require_tenant_id(tenant_id)
        event = TimelineEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            incident_id=incident_id,
            event_time=event_time,
            event_type=event_type,
            message=message,
            created_by_user_id=user_id,
            created_at=now,
        )
        self._timeline.setdefault(incident_id, []).append(event)
        return event

    async def list_timeline_events(self, *, tenant_id: str, incident_id: str) -> list[TimelineEvent]:
        require_tenant_id(tenant_id)
        events = [
            event
            for event in self._timeline.get(incident_id, [])
            if event.tenant_id == tenant_id
        ]
        events.sort(key=lambda event: (event.event_time, event.id))
        return events

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
        require_tenant_id(tenant_id)
        task = IncidentTask(
            id=str(uuid4()),
            tenant_id=tenant_id,
            incident_id=incident_id,
            title=title,
            description=description,
            status="open",
            assignee_user_id=assignee_user_id,
            due_at=due_at,
            created_by_user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self._tasks.setdefault(incident_id, {})[task.id] = task
        return task

    async def find_task(
        self, *, tenant_id: str, incident_id: str, task_id: str
    ) -> IncidentTask | None:
        require_tenant_id(tenant_id)
        task = self._tasks.get(incident_id, {}).get(task_id)
        if task is None or task.tenant_id != tenant_id:
            return None
        return task

    async def update_task(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        task_id: str,
        changes: TaskChanges,
        now: datetime,
    ) -> IncidentTask | None:
        task = await self.find_task(tenant_id=tenant_id, incident_id=incident_id, task_id=task_id)
        if task is None:
            return None
        updated = replace(task, **changes.provided(), updated_at=now)
        self._tasks[incident_id][task_id] = updated
        return updated

    async def list_tasks(self, *, tenant_id: str, incident_id: str) -> list[IncidentTask]:
        require_tenant_id(tenant_id)
        tasks = [
            task
            for task in self._tasks.get(incident_id, {}).values()
            if task.tenant_id == tenant_id
        ]
        tasks.sort(key=lambda task: (task.created_at, task.id), reverse=True)
        return tasks

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
        require_tenant_id(tenant_id)
        update = StatusUpdate(
            id=str(uuid4()),
            tenant_id=tenant_id,
            incident_id=incident_id,
            audience=audience,
            message=message,
            created_by_user_id=user_id,
            published_at=published_at,
            created_at=now,
        )
        self._status_updates.setdefault(incident_id, []).append(update)
        return update

    async def list_status_updates(self, *, tenant_id: str, incident_id: str) -> list[StatusUpdate]:
        require_tenant_id(tenant_id)
        updates = [
            update
            for update in self._status_updates.get(incident_id, [])
            if update.tenant_id == tenant_id
        ]
        updates.sort(key=lambda update: (update.published_at, update.id), reverse=True)
        return updates
