from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.domain import entities
from incidentops.domain.models import AuditLogEvent
from incidentops.persistence.guards import tenant_predicate
from incidentops.persistence.repos.base import PagePosition
from incidentops.persistence.repos.sql.mappers import audit_event_from_row


class SqlAuditLogRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

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
    ) -> entities.AuditLogEvent:
        row = AuditLogEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            metadata_json=dict(metadata),
            trace_id=trace_id,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return audit_event_from_row(row)

    async def list_events(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[entities.AuditLogEvent]:
        # Scope all audit queries to a tenant to prevent cross-tenant leakage.
        stmt = select(AuditLogEvent).where(tenant_predicate(AuditLogEvent, tenant_id))
        if after is not None:
            stmt = stmt.where(
                or_(
                    AuditLogEvent.created_at < after.created_at,
                    and_(AuditLogEvent.created_at == after.created_at, AuditLogEvent.id < after.id),
                )
            )
        stmt = stmt.order_by(AuditLogEvent.created_at.desc(), AuditLogEvent.id.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [audit_event_from_row(row) for row in result.scalars().all()]
