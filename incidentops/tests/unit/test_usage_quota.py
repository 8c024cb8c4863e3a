from __future__ import annotations

from datetime import timedelta

import pytest

from incidentops.core.config import Settings
from incidentops.core.errors import NotFound, PermissionDenied, QuotaExceeded, ValidationError
from incidentops.persistence.repos.factory import build_memory_repositories
from incidentops.services.quota import WRITE_REQUEST_METRIC, UsageService
from incidentops.tests.utils.clock import Clock
from incidentops.tests.utils.seed import seed_member, seed_tenant, seed_user


async def _setup(limit: int = 2):
    repositories = build_memory_repositories()
    clock = Clock()
    owner = await seed_user(repositories)
    record = await seed_tenant(repositories, owner_user_id=owner.id)
    service = UsageService(
        repositories.usage,
        repositories.tenants,
        settings=Settings(usage_daily_write_limit=limit),
        time_provider=clock.now,
    )
    return repositories, clock, owner, record.tenant.id, service


async def _consume(service: UsageService, tenant_id: str, user_id: str):
    return await service.consume_write_quota(
        tenant_id=tenant_id,
        actor_user_id=user_id,
        api_key_id=None,
        route="incidents.create",
        trace_id="req-1",
    )


@pytest.mark.asyncio
async def test_writes_are_rejected_once_the_window_is_full() -> None:
    _, _, owner, tenant_id, service = await _setup(limit=2)

    first = await _consume(service, tenant_id, owner.id)
    second = await _consume(service, tenant_id, owner.id)
    assert (first.used, first.remaining) == (1, 1)
    assert (second.used, second.remaining) == (2, 0)

    with pytest.raises(QuotaExceeded) as exc_info:
        await _consume(service, tenant_id, owner.id)
    assert exc_info.value.status_code == 429
    assert exc_info.value.details == {
        "tenant_id": tenant_id,
        "metric": WRITE_REQUEST_METRIC,
        "limit": 2,
        "used": 2,
    }


@pytest.mark.asyncio
async def test_rejected_writes_do_not_consume_budget() -> None:
    repositories, _, owner, tenant_id, service = await _setup(limit=1)
    await _consume(service, tenant_id, owner.id)
    for _ in range(3):
        with pytest.raises(QuotaExceeded):
            await _consume(service, tenant_id, owner.id)
    assert (
        await repositories.usage.sum_usage_since(
            tenant_id=tenant_id,
            metric=WRITE_REQUEST_METRIC,
            since=Clock().now() - timedelta(days=1),
        )
        == 1
    )


@pytest.mark.asyncio
async def test_window_slides_rather_than_resetting_at_midnight() -> None:
    _, clock, owner, tenant_id, service = await _setup(limit=2)
    await _consume(service, tenant_id, owner.id)
    clock.advance(timedelta(hours=12))
    await _consume(service, tenant_id, owner.id)

    # Twelve hours later the first write has aged out; the second has not.
    clock.advance(timedelta(hours=12, seconds=1))
    summary = await _consume(service, tenant_id, owner.id)
    assert summary.used == 2
    with pytest.raises(QuotaExceeded):
        await _consume(service, tenant_id, owner.id)


@pytest.mark.asyncio
async def test_zero_limit_blocks_all_writes() -> None:
    _, _, owner, tenant_id, service = await _setup(limit=0)
    with pytest.raises(QuotaExceeded):
        await _consume(service, tenant_id, owner.id)


@pytest.mark.asyncio
async def test_non_members_cannot_spend_a_tenant_budget() -> None:
    repositories, _, _, tenant_id, service = await _setup()
    stranger = await seed_user(repositories)
    with pytest.raises(NotFound) as exc_info:
        await _consume(service, tenant_id, stranger.id)
    assert exc_info.value.code == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_operator_limit_override_applies_immediately() -> None:
    _, _, owner, tenant_id, service = await _setup(limit=1)
    await _consume(service, tenant_id, owner.id)
    await service.set_daily_write_limit(tenant_id=tenant_id, daily_write_limit=5)
    summary = await _consume(service, tenant_id, owner.id)
    assert (summary.used, summary.limit) == (2, 5)

    with pytest.raises(ValidationError) as exc_info:
        await service.set_daily_write_limit(tenant_id=tenant_id, daily_write_limit=-1)
    assert exc_info.value.code == "QUOTA_LIMIT_INVALID"


@pytest.mark.asyncio
async def test_usage_summary_requires_billing_read() -> None:
    repositories, _, owner, tenant_id, service = await _setup(limit=3)
    await _consume(service, tenant_id, owner.id)

    summary = await service.get_usage_summary(user_id=owner.id, tenant_id=tenant_id)
    assert (summary.used, summary.limit, summary.remaining, summary.window_hours) == (1, 3, 2, 24)

    billing, _ = await seed_member(
        repositories, tenant_id=tenant_id, role="Billing", invited_by_user_id=owner.id
    )
    assert (await service.get_usage_summary(user_id=billing.id, tenant_id=tenant_id)).used == 1

    responder, _ = await seed_member(
        repositories, tenant_id=tenant_id, role="Responder", invited_by_user_id=owner.id
    )
    with pytest.raises(PermissionDenied):
        await service.get_usage_summary(user_id=responder.id, tenant_id=tenant_id)
