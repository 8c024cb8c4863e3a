from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.domain import entities
from incidentops.domain.models import TenantUsageQuota, UsageEvent
from incidentops.persistence.guards import tenant_predicate
from incidentops.persistence.repos.sql.mappers import quota_from_row, usage_event_from_row


class SqlUsageRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _write_quota(
        self, *, tenant_id: str, daily_write_limit: int, now: datetime
    ) -> entities.TenantUsageQuota:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(TenantUsageQuota)
                    .where(tenant_predicate(TenantUsageQuota, tenant_id))
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = TenantUsageQuota(
                        tenant_id=tenant_id,
                        daily_write_limit=daily_write_limit,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(row)
                else:
                    row.daily_write_limit = daily_write_limit
                    row.updated_at = now
                await session.flush()
                return quota_from_row(row)

    async def upsert_tenant_quota(
        self, *, tenant_id: str, daily_write_limit: int, now: datetime
    ) -> entities.TenantUsageQuota:
        try:
            return await self._write_quota(
                tenant_id=tenant_id, daily_write_limit=daily_write_limit, now=now
            )
        except IntegrityError:
            # A concurrent first write inserted the row; retry as an update.
            return await self._write_quota(
                tenant_id=tenant_id, daily_write_limit=daily_write_limit, now=now
            )

    async def get_tenant_quota(self, *, tenant_id: str) -> entities.TenantUsageQuota | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TenantUsageQuota).where(tenant_predicate(TenantUsageQuota, tenant_id))
            )
            row = result.scalar_one_or_none()
            return quota_from_row(row) if row else None

    async def sum_usage_since(self, *, tenant_id: str, metric: str, since: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(UsageEvent.amount), 0)).where(
                    tenant_predicate(UsageEvent, tenant_id),
                    UsageEvent.metric == metric,
                    UsageEvent.created_at >= since,
                )
            )
            return int(result.scalar_one() or 0)

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
    ) -> entities.UsageEvent:
        tenant_predicate(UsageEvent, tenant_id)
        row = UsageEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            api_key_id=api_key_id,
            metric=metric,
            amount=amount,
            route=route,
            trace_id=trace_id,
            created_at=created_at,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return usage_event_from_row(row)
