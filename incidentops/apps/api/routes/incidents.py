from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AwareDatetime, BaseModel, StringConstraints, model_validator

from incidentops.apps.api.csrf import enforce_csrf
from incidentops.apps.api.deps import (
    get_active_tenant_id,
    get_audit_context,
    get_runtime,
    require_auth_context,
    write_quota,
)
from incidentops.apps.api.response import success_response
from incidentops.domain.entities import (
    Incident,
    IncidentSeverity,
    IncidentStatus,
    IncidentTask,
    StatusUpdate,
    StatusUpdateAudience,
    TaskStatus,
    TimelineEvent,
)
from incidentops.persistence.repos.base import IncidentChanges, TaskChanges
from incidentops.runtime import Runtime
from incidentops.services.audit import AuditEvent, RequestContext
from incidentops.services.auth.context import AuthContext


router = APIRouter(prefix="/incidents", tags=["incidents"], dependencies=[Depends(enforce_csrf)])

Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=200)]
Description = Annotated[str, StringConstraints(strip_whitespace=True, max_length=4000)]
ServiceName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
EventType = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
Message = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=4000)]


class _PartialUpdate(BaseModel):
    @model_validator(mode="after")
    def _require_one_field(self) -> Any:
        if not self.model_fields_set:
            raise ValueError("At least one field is required for update.")
        return self

    def provided(self) -> dict[str, Any]:
        # Only fields the client sent, so an explicit null differs from an omission.
        return {name: getattr(self, name) for name in self.model_fields_set}


class CreateIncidentRequest(BaseModel):
    title: Title
    description: Description = ""
    severity: IncidentSeverity
    start_time: AwareDatetime
    impacted_services: list[ServiceName] = []


class UpdateIncidentRequest(_PartialUpdate):
    title: Title | None = None
    description: Description | None = None
    severity: IncidentSeverity | None = None
    status: IncidentStatus | None = None
    end_time: AwareDatetime | None = None
    impacted_services: list[ServiceName] | None = None

    @model_validator(mode="after")
    def _reject_nulls(self) -> "UpdateIncidentRequest":
        # end_time is the only field that may be cleared.
        for name in self.model_fields_set - {"end_time"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null.")
        return self


class CreateTimelineEventRequest(BaseModel):
    event_time: AwareDatetime
    event_type: EventType
    message: Message


class CreateTaskRequest(BaseModel):
    title: Title
    description: Description = ""
    assignee_user_id: UUID | None = None
    due_at: AwareDatetime | None = None


class UpdateTaskRequest(_PartialUpdate):
    title: Title | None = None
    description: Description | None = None
    status: TaskStatus | None = None
    assignee_user_id: UUID | None = None
    due_at: AwareDatetime | None = None

    @model_validator(mode="after")
    def _reject_nulls(self) -> "UpdateTaskRequest":
        for name in self.model_fields_set & {"title", "description", "status"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null.")
        return self


class CreateStatusUpdateRequest(BaseModel):
    audience: StatusUpdateAudience
    message: Message
    published_at: AwareDatetime


class IncidentOut(BaseModel):
    id: str
    tenant_id: str
    title: str
    description: str
    severity: str
    status: str
    start_time: datetime
    end_time: datetime | None
    declared_by_user_id: str
    impacted_services: list[str]
    created_at: datetime
    updated_at: datetime


class TimelineEventOut(BaseModel):
    id: str
    tenant_id: str
    incident_id: str
    event_time: datetime
    event_type: str
    message: str
    created_by_user_id: str
    created_at: datetime


class TaskOut(BaseModel):
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


class StatusUpdateOut(BaseModel):
    id: str
    tenant_id: str
    incident_id: str
    audience: str
    message: str
    created_by_user_id: str
    published_at: datetime
    created_at: datetime


def _incident_out(incident: Incident) -> IncidentOut:
    return IncidentOut(
        id=incident.id,
        tenant_id=incident.tenant_id,
        title=incident.title,
        description=incident.description,
        severity=incident.severity,
        status=incident.status,
        start_time=incident.start_time,
        end_time=incident.end_time,
        declared_by_user_id=incident.declared_by_user_id,
        impacted_services=list(incident.impacted_services),
        created_at=incident.created_at,
        updated_at=incident.updated_at,
    )


def _event_out(event: TimelineEvent) -> TimelineEventOut:
    return TimelineEventOut(
        id=event.id,
        tenant_id=event.tenant_id,
        incident_id=event.incident_id,
        event_time=event.event_time,
        event_type=event.event_type,
        message=event.message,
        created_by_user_id=event.created_by_user_id,
        created_at=event.created_at,
    )


def _task_out(task: IncidentTask) -> TaskOut:
    return TaskOut(
        id=task.id,
        tenant_id=task.tenant_id,
        incident_id=task.incident_id,
        title=task.title,
        description=task.description,
        status=task.status,
        assignee_user_id=task.assignee_user_id,
        due_at=task.due_at,
        created_by_user_id=task.created_by_user_id,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _status_update_out(update: StatusUpdate) -> StatusUpdateOut:
    return StatusUpdateOut(
        id=update.id,
        tenant_id=update.tenant_id,
        incident_id=update.incident_id,
        audience=update.audience,
        message=update.message,
        created_by_user_id=update.created_by_user_id,
        published_at=update.published_at,
        created_at=update.created_at,
    )


@router.post("", status_code=201, dependencies=[Depends(write_quota("incidents.create"))])
async def create_incident(
    request: Request,
    payload: CreateIncidentRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    incident = await runtime.incidents.create_incident(
        user_id=context.user_id,
        tenant_id=tenant_id,
        title=payload.title,
        description=payload.description,
        severity=payload.severity,
        start_time=payload.start_time,
        impacted_services=payload.impacted_services,
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.created",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="incident",
            target_id=incident.id,
            metadata={"severity": incident.severity, "status": incident.status},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"incident": _incident_out(incident)})


@router.get("")
async def list_incidents(
    request: Request,
    limit: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    page = await runtime.incidents.list_incidents(
        user_id=context.user_id, tenant_id=tenant_id, limit=limit, cursor=cursor
    )
    data = {
        "incidents": [_incident_out(incident) for incident in page.items],
        "next_cursor": page.next_cursor,
    }
    return success_response(request=request, data=data)


@router.get("/{incident_id}")
async def get_incident(
    request: Request,
    incident_id: UUID,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    incident = await runtime.incidents.get_incident(
        user_id=context.user_id, tenant_id=tenant_id, incident_id=str(incident_id)
    )
    return success_response(request=request, data={"incident": _incident_out(incident)})


@router.patch("/{incident_id}", dependencies=[Depends(write_quota("incidents.update"))])
async def update_incident(
    request: Request,
    incident_id: UUID,
    payload: UpdateIncidentRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    provided = payload.provided()
    incident = await runtime.incidents.update_incident(
        user_id=context.user_id,
        tenant_id=tenant_id,
        incident_id=str(incident_id),
        changes=IncidentChanges(**provided),
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.updated",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="incident",
            target_id=incident.id,
            metadata={"changed_fields": sorted(provided)},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"incident": _incident_out(incident)})


@router.post(
    "/{incident_id}/timeline-events",
    status_code=201,
    dependencies=[Depends(write_quota("incidents.timeline_events.create"))],
)
async def create_timeline_event(
    request: Request,
    incident_id: UUID,
    payload: CreateTimelineEventRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    event = await runtime.incidents.add_timeline_event(
        user_id=context.user_id,
        tenant_id=tenant_id,
        incident_id=str(incident_id),
        event_time=payload.event_time,
        event_type=payload.event_type,
        message=payload.message,
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.timeline_event.created",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="timeline_event",
            target_id=event.id,
            metadata={"incident_id": event.incident_id, "event_type": event.event_type},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"event": _event_out(event)})


@router.get("/{incident_id}/timeline-events")
async def list_timeline_events(
    request: Request,
    incident_id: UUID,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    events = await runtime.incidents.list_timeline_events(
        user_id=context.user_id, tenant_id=tenant_id, incident_id=str(incident_id)
    )
    return success_response(request=request, data={"events": [_event_out(e) for e in events]})


@router.post(
    "/{incident_id}/tasks",
    status_code=201,
    dependencies=[Depends(write_quota("incidents.tasks.create"))],
)
async def create_task(
    request: Request,
    incident_id: UUID,
    payload: CreateTaskRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    task = await runtime.incidents.create_task(
        user_id=context.user_id,
        tenant_id=tenant_id,
        incident_id=str(incident_id),
        title=payload.title,
        description=payload.description,
        assignee_user_id=str(payload.assignee_user_id) if payload.assignee_user_id else None,
        due_at=payload.due_at,
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.task.created",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="task",
            target_id=task.id,
            metadata={"incident_id": task.incident_id, "status": task.status},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"task": _task_out(task)})


@router.get("/{incident_id}/tasks")
async def list_tasks(
    request: Request,
    incident_id: UUID,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    tasks = await runtime.incidents.list_tasks(
        user_id=context.user_id, tenant_id=tenant_id, incident_id=str(incident_id)
    )
    return success_response(request=request, data={"tasks": [_task_out(task) for task in tasks]})


@router.patch(
    "/{incident_id}/tasks/{task_id}",
    dependencies=[Depends(write_quota("incidents.tasks.update"))],
)
async def update_task(
    request: Request,
    incident_id: UUID,
    task_id: UUID,
    payload: UpdateTaskRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    provided = payload.provided()
    if provided.get("assignee_user_id") is not None:
        provided["assignee_user_id"] = str(provided["assignee_user_id"])
    task = await runtime.incidents.update_task(
        user_id=context.user_id,
        tenant_id=tenant_id,
        incident_id=str(incident_id),
        task_id=str(task_id),
        changes=TaskChanges(**provided),
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.task.updated",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="task",
            target_id=task.id,
            metadata={"incident_id": task.incident_id, "changed_fields": sorted(provided)},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"task": _task_out(task)})


@router.post(
    "/{incident_id}/status-updates",
    status_code=201,
    dependencies=[Depends(write_quota("incidents.status_updates.create"))],
)
async def create_status_update(
    request: Request,
    incident_id: UUID,
    payload: CreateStatusUpdateRequest,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    update = await runtime.incidents.create_status_update(
        user_id=context.user_id,
        tenant_id=tenant_id,
        incident_id=str(incident_id),
        audience=payload.audience,
        message=payload.message,
        published_at=payload.published_at,
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="incident.status_update.created",
            tenant_id=tenant_id,
            actor_user_id=context.user_id,
            target_type="status_update",
            target_id=update.id,
            metadata={"incident_id": update.incident_id, "audience": update.audience},
            context=audit_context,
        )
    )
    return success_response(request=request, data={"status_update": _status_update_out(update)})


@router.get("/{incident_id}/status-updates")
async def list_status_updates(
    request: Request,
    incident_id: UUID,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    updates = await runtime.incidents.list_status_updates(
        user_id=context.user_id, tenant_id=tenant_id, incident_id=str(incident_id)
    )
    return success_response(
        request=request, data={"status_updates": [_status_update_out(u) for u in updates]}
    )
