from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from incidentops.core.config import Settings, get_settings
from incidentops.core.errors import QuotaExceeded, ValidationError
from incidentops.domain.entities import TenantUsageQuota
from incidentops.persistence.repos.base import TenantRepository, UsageRepository
from incidentops.services.tenancy import TenantIsolationGuard


logger = logging.getLogger(__name__)

WRITE_REQUEST_METRIC = "api.write_requests"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageSummary:
    # Window usage snapshot rendered by /usage and returned after each consume.
    tenant_id: str
    metric: str
    window_hours: int
    used: int
    limit: int
    remaining: int


class UsageService:
    """Sliding-window write quota per tenant.

    Usage is a sum over append-only events rather than a mutable counter, so
    retries and partial failures never corrupt it. The read-then-write pair is
    not atomic: concurrent bursts may overshoot the limit slightly.
    """

    def __init__(
        self,
        usage: UsageRepository,
        tenants: TenantRepository,
        *,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._usage = usage
        self._guard = TenantIsolationGuard(tenants)
        self._default_limit = settings.usage_daily_write_limit
        self._window_hours = settings.usage_window_hours
        # Allow time injection for deterministic window tests.
        self._time_provider = time_provider or _utc_now

    async def _ensure_quota(self, tenant_id: str) -> TenantUsageQuota:
        # Quotas are materialized lazily with the configured default.
        existing = await self._usage.get_tenant_quota(tenant_id=tenant_id)
        if existing is not None:
            return existing
        return await self._usage.upsert_tenant_quota(
            tenant_id=tenant_id, daily_write_limit=self._default_limit, now=self._time_provider()
        )

    def _summary(self, tenant_id: str, used: int, limit: int) -> UsageSummary:
        return UsageSummary(
            tenant_id=tenant_id,
            metric=WRITE_REQUEST_METRIC,
            window_hours=self._window_hours,
            used=used,
            limit=limit,
            remaining=max(limit - used, 0),
        )

    async def _window_usage(self, tenant_id: str, now: datetime) -> int:
        since = now - timedelta(hours=self._window_hours)
        return await self._usage.sum_usage_since(
            tenant_id=tenant_id, metric=WRITE_REQUEST_METRIC, since=since
        )

    async def consume_write_quota(
        self,
        *,
        tenant_id: str,
        actor_user_id: str,
        api_key_id: str | None,
        route: str,
        trace_id: str | None,
    ) -> UsageSummary:
        # Only members spend a tenant's budget; strangers see the usual NotFound.
        await self._guard.require_membership(actor_user_id, tenant_id)
        quota = await self._ensure_quota(tenant_id)
        now = self._time_provider()
        used = await self._window_usage(tenant_id, now)

        if used + 1 > quota.daily_write_limit:
            logger.info(
                "quota_exceeded tenant_id=%s metric=%s limit=%s used=%s",
                tenant_id,
                WRITE_REQUEST_METRIC,
                quota.daily_write_limit,
                used,
            )
            raise QuotaExceeded(
                "Tenant write quota exceeded.",
                details={
                    "tenant_id": tenant_id,
                    "metric": WRITE_REQUEST_METRIC,
                    "limit": quota.daily_write_limit,
                    "used": used,
                },
            )

        await self._usage.create_usage_event(
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            api_key_id=api_key_id,
            metric=WRITE_REQUEST_METRIC,
            amount=1,
            route=route,
            trace_id=trace_id,
            created_at=now,
        )
        return self._summary(tenant_id, used + 1, quota.daily_write_limit)

    async def get_usage_summary(self, *, user_id: str, tenant_id: str) -> UsageSummary:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "billing.read")
        quota = await self._ensure_quota(tenant_id)
        used = await self._window_usage(tenant_id, self._time_provider())
        return self._summary(tenant_id, used, quota.daily_write_limit)

    async def set_daily_write_limit(self, *, tenant_id: str, daily_write_limit: int) -> TenantUsageQuota:
        # Operator path (scripts); no caller identity is involved.
        if daily_write_limit < 0:
            raise ValidationError("Daily write limit must not be negative.", code="QUOTA_LIMIT_INVALID")
        return await self._usage.upsert_tenant_quota(
            tenant_id=tenant_id, daily_write_limit=daily_write_limit, now=self._time_provider()
        )
