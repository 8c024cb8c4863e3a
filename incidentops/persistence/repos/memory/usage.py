from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from incidentops.domain.entities import TenantUsageQuota, UsageEvent
from incidentops.persistence.guards import require_tenant_id


class InMemoryUsageRepository:
    def __init__(self) -> None:
        self._quotas: dict[str, TenantUsageQuota] = {}
        # Append-only; consumption is always derived from this log.
        self._events: list[UsageEvent] = []

    async def upsert_tenant_quota(
        self, *, tenant_id: str, daily_write_limit: int, now: datetime
    ) -> TenantUsageQuota:
        require_tenant_id(tenant_id)
        existing = self._quotas.get(tenant_id)
        if existing is None:
            quota = TenantUsageQuota(
                tenant_id=tenant_id,
                daily_write_limit=daily_write_limit,
                created_at=now,
                updated_at=now,
            )
        else:
            quota = replace(existing, daily_write_limit=daily_write_limit, updated_at=now)
        self._quotas[tenant_id] = quota
        return quota

    async def get_tenant_quota(self, *, tenant_id: str) -> TenantUsageQuota | None:
        require_tenant_id(tenant_id)
        return self._quotas.get(tenant_id)

    async def sum_usage_since(self, *, tenant_id: str, metric: str, since: datetime) -> int:
        require_tenant_id(tenant_id)
        return sum(
            event.amount
            for event in self._events
            if event.tenant_id == tenant_id and event.metric == metric and event.created_at >= since
        )

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
    ) -> UsageEvent:
        require_tenant_id(tenant_id)
        event = UsageEvent(
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
        self._events.append(event)
        return event
