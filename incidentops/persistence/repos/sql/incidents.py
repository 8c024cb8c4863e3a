from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import uuid4

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.domain import entities
from incidentops.domain.models import (
    Incident,
    IncidentService,
    IncidentTask,
    StatusUpdate,
    TimelineEvent,
)
from incidentops.persistence.guards import tenant_predicate
from incidentops.persistence.repos.base import (
    IncidentChanges,
    PagePosition,
    TaskChanges,
    normalize_services,
)
from incidentops.persistence.repos.sql.mappers import (
    incident_from_row,
    status_update_from_row,
    task_from_row,
    timeline_event_from_row,
)


async def _load_services(
    session: AsyncSession, *, tenant_id: str, incident_ids: list[str]
) -> dict[str, tuple[str, ...]]:
    # Fetch impacted services for a page of incidents in one round trip.
    if not incident_ids:
        return {}
    result = await session.execute(
        select(IncidentService.incident_id, IncidentService.service_name)
        .where(
            tenant_predicate(IncidentService, tenant_id),
            IncidentService.incident_id.in_(incident_ids),
        )
        .order_by(IncidentService.service_name.asc())
    )
    services: dict[str, list[str]] = {}
    for incident_id, service_name in result.all():
        services.setdefault(incident_id, []).append(service_name)
    return {incident_id: tuple(names) for incident_id, names in services.items()}


async def _replace_services(
    session: AsyncSession, *, tenant_id: str, incident_id: str, services: tuple[str, ...]
) -> None:
    await session.execute(
        delete(IncidentService).where(
            tenant_predicate(IncidentService, tenant_id),
            IncidentService.incident_id == incident_id,
        )
    )
    for name in services:
        session.add(IncidentService(tenant_id=tenant_id, incident_id=incident_id, service_name=name))


class SqlIncidentRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _get_incident_row(
        self, session: AsyncSession, *, tenant_id: str, incident_id: str
    ) -> Incident | None:
        result = await session.execute(
            select(Incident).where(
                tenant_predicate(Incident, tenant_id),
                Incident.id == incident_id,
            )
        )
        return result.scalar_one_or_none()

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
    ) -> entities.Incident:
        tenant_predicate(Incident, tenant_id)
        services = normalize_services(impacted_services)
        row = Incident(
            id=str(uuid4()),
            tenant_id=tenant_id,
            title=title,
            description=description,
            severity=severity,
            status="declared",
            start_time=start_time,
            end_time=None,
            declared_by_user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                await _replace_services(
                    session, tenant_id=tenant_id, incident_id=row.id, services=services
                )
            return incident_from_row(row, services)

    async def list_incidents(
        self, *, tenant_id: str, limit: int, after: PagePosition | None = None
    ) -> list[entities.Incident]:
        stmt = select(Incident).where(tenant_predicate(Incident, tenant_id))
        if after is not None:
            # Keyset filter for (created_at DESC, id DESC) ordering.
            stmt = stmt.where(
                or_(
                    Incident.created_at < after.created_at,
                    and_(Incident.created_at == after.created_at, Incident.id < after.id),
                )
            )
        stmt = stmt.order_by(Incident.created_at.desc(), Incident.id.desc()).limit(limit)
        async with self._session_factory() as session:
            rows = list((await session.execute(stmt)).scalars().all())
            services = await _load_services(
                session, tenant_id=tenant_id, incident_ids=[row.id for row in rows]
            )
            return [incident_from_row(row, services.get(row.id, ())) for row in rows]

    async def find_incident(self, *, tenant_id: str, incident_id: str) -> entities.Incident | None:
        async with self._session_factory() as session:
            row = await self._get_incident_row(session, tenant_id=tenant_id, incident_id=incident_id)
            if row is None:
                return None
            services = await _load_services(session, tenant_id=tenant_id, incident_ids=[row.id])
            return incident_from_row(row, services.get(row.id, ()))

    async def update_incident(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        changes: IncidentChanges,
        now: datetime,
    ) -> entities.Incident | None:
        values = changes.provided()
        new_services = values.pop("impacted_services", None)
        # Field updates and the service-set replacement share one transaction.
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._get_incident_row(
                    session, tenant_id=tenant_id, incident_id=incident_id
                )
                if row is None:
                    return None
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = now
                if new_services is not None:
                    await _replace_services(
                        session,
                        tenant_id=tenant_id,
                        incident_id=incident_id,
                        services=normalize_services(new_services),
                    )
                await session.flush()
                services = await _load_services(
                    session, tenant_id=tenant_id, incident_ids=[incident_id]
                )
                return incident_from_row(row, services.get(incident_id, ()))

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
    ) -> entities.TimelineEvent:
        tenant_predicate(TimelineEvent, tenant_id)
        row = TimelineEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            incident_id=incident_id,
            event_time=event_time,
            event_type=event_type,
            message=message,
            created_by_user_id=user_id,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return timeline_event_from_row(row)

    async def list_timeline_events(
        self, *, tenant_id: str, incident_id: str
    ) -> list[entities.TimelineEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TimelineEvent)
                .where(
                    tenant_predicate(TimelineEvent, tenant_id),
                    TimelineEvent.incident_id == incident_id,
                )
                .order_by(TimelineEvent.event_time.asc(), TimelineEvent.id.asc())
            )
            return [timeline_event_from_row(row) for row in result.scalars().all()]

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
    ) -> entities.IncidentTask:
        tenant_predicate(IncidentTask, tenant_id)
        row = IncidentTask(
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
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return task_from_row(row)

    async def find_task(
        self, *, tenant_id: str, incident_id: str, task_id: str
    ) -> entities.IncidentTask | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IncidentTask).where(
                    tenant_predicate(IncidentTask, tenant_id),
                    IncidentTask.incident_id == incident_id,
                    IncidentTask.id == task_id,
                )
            )
            row = result.scalar_one_or_none()
            return task_from_row(row) if row else None

    async def update_task(
        self,
        *,
        tenant_id: str,
        incident_id: str,
        task_id: str,
        changes: TaskChanges,
        now: datetime,
    ) -> entities.IncidentTask | None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(IncidentTask).where(
                        tenant_predicate(IncidentTask, tenant_id),
                        IncidentTask.incident_id == incident_id,
                        IncidentTask.id == task_id,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                for key, value in changes.provided().items():
                    setattr(row, key, value)
                row.updated_at = now
                await session.flush()
                return task_from_row(row)

    async def list_tasks(self, *, tenant_id: str, incident_id: str) -> list[entities.IncidentTask]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IncidentTask)
                .where(
                    tenant_predicate(IncidentTask, tenant_id),
                    IncidentTask.incident_id == incident_id,
                )
                .order_by(IncidentTask.created_at.desc(), IncidentTask.id.desc())
            )
            return [task_from_row(row) for row in result.scalars().all()]

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
    ) -> entities.StatusUpdate:
        tenant_predicate(StatusUpdate, tenant_id)
        row = StatusUpdate(
            id=str(uuid4()),
            tenant_id=tenant_id,
            incident_id=incident_id,
            audience=audience,
            message=message,
            created_by_user_id=user_id,
            published_at=published_at,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return status_update_from_row(row)

    async def list_status_updates(
        self, *, tenant_id: str, incident_id: str
    ) -> list[entities.StatusUpdate]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StatusUpdate)
                .where(
                    tenant_predicate(StatusUpdate, tenant_id),
                    StatusUpdate.incident_id == incident_id,
                )
                .order_by(StatusUpdate.published_at.desc(), StatusUpdate.id.desc())
            )
            return [status_update_from_row(row) for row in result.scalars().all()]
