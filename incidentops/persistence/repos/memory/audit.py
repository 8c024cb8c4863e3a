from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from incidentops.domain.entities import AuditLogEvent
from incidentops.persistence.guards import require_tenant_id
from incidentops.persistence.repos.base import PagePosition, is_after_position


class InMemoryAuditLogRepository:
    def __init__(self) -> None:
        self._events: list[AuditLogEvent] = []

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
        event = AuditLogEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            metadata=dict(metadata),
            trace_id=trace_id,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        self._events.append(event)
        return event

    async def list_events(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[AuditLogEvent]:
        # Scope all audit queries to a tenant to prevent cross-tenant leakage.
        require_tenant_id(tenant_id)
        rows = [
            event
            for event in self._events
            if event.tenant_id == tenant_id
            and is_after_position(event.created_at, event.id, after)
        ]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return rows[:limit]
