from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from incidentops.apps.api.csrf import enforce_csrf
from incidentops.apps.api.deps import get_active_tenant_id, get_runtime, require_auth_context
from incidentops.apps.api.response import success_response
from incidentops.domain.entities import AuditLogEvent
from incidentops.runtime import Runtime
from incidentops.services.auth.context import AuthContext


router = APIRouter(prefix="/audit-logs", tags=["audit"], dependencies=[Depends(enforce_csrf)])


class AuditEventOut(BaseModel):
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


def _event_out(event: AuditLogEvent) -> AuditEventOut:
    return AuditEventOut(
        id=event.id,
        tenant_id=event.tenant_id,
        actor_user_id=event.actor_user_id,
        action=event.action,
        target_type=event.target_type,
        target_id=event.target_id,
        metadata=event.metadata,
        trace_id=event.trace_id,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        created_at=event.created_at,
    )


@router.get("")
async def list_audit_events(
    request: Request,
    limit: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    page = await runtime.audit_log.list_events(
        user_id=context.user_id, tenant_id=tenant_id, limit=limit, cursor=cursor
    )
    data = {
        "events": [_event_out(event) for event in page.items],
        "next_cursor": page.next_cursor,
    }
    return success_response(request=request, data=data)
