from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from incidentops.domain.models import Base
from incidentops.persistence.db import build_engine, build_sessionmaker
from incidentops.persistence.guards import TenantPredicateError
from incidentops.persistence.repos.base import IncidentChanges, PagePosition
from incidentops.persistence.repos.factory import build_memory_repositories, build_sql_repositories
from incidentops.services.auth.api_keys import hash_api_key
from incidentops.tests.utils.clock import Clock
from incidentops.tests.utils.seed import seed_tenant, seed_user


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def repositories(request, tmp_path):
    # Both backends must satisfy the same contract.
    if request.param == "memory":
        yield build_memory_repositories()
        return
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'repos.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sql_repositories(build_sessionmaker(engine))
    await engine.dispose()


async def _tenant(repositories, clock: Clock) -> tuple[str, str]:
    owner = await seed_user(repositories, now=clock.now())
    record = await seed_tenant(repositories, owner_user_id=owner.id, now=clock.now())
    return record.tenant.id, owner.id


async def _incident(repositories, clock: Clock, tenant_id: str, user_id: str, title: str = "Checkout errors"):
    return await repositories.incidents.create_incident(
        tenant_id=tenant_id,
        user_id=user_id,
        title=title,
        description="",
        severity="SEV3",
        start_time=clock.now(),
        impacted_services=["payments", "checkout", " payments "],
        now=clock.now(),
    )


@pytest.mark.asyncio
async def test_incidents_are_tenant_scoped(repositories) -> None:
    clock = Clock()
    tenant_a, owner_a = await _tenant(repositories, clock)
    tenant_b, _ = await _tenant(repositories, clock)
    incident = await _incident(repositories, clock, tenant_a, owner_a)

    assert incident.impacted_services == ("checkout", "payments")
    found = await repositories.incidents.find_incident(tenant_id=tenant_a, incident_id=incident.id)
    assert found is not None and found.id == incident.id
    assert await repositories.incidents.find_incident(tenant_id=tenant_b, incident_id=incident.id) is None
    assert await repositories.incidents.list_incidents(tenant_id=tenant_b, limit=10) == []
    assert (
        await repositories.incidents.update_incident(
            tenant_id=tenant_b,
            incident_id=incident.id,
            changes=IncidentChanges(title="Hijacked"),
            now=clock.now(),
        )
        is None
    )


@pytest.mark.asyncio
async def test_missing_tenant_predicate_is_refused(repositories) -> None:
    with pytest.raises(TenantPredicateError):
        await repositories.incidents.list_incidents(tenant_id="", limit=10)
    with pytest.raises(TenantPredicateError):
        await repositories.incidents.find_incident(tenant_id="", incident_id=str(uuid4()))


@pytest.mark.asyncio
async def test_incident_keyset_pagination(repositories) -> None:
    clock = Clock()
    tenant_id, owner_id = await _tenant(repositories, clock)
    created = [
        await _incident(repositories, clock, tenant_id, owner_id, title=f"Incident {index}")
        for index in range(5)
    ]
    newest_first = [item.id for item in reversed(created)]

    first = await repositories.incidents.list_incidents(tenant_id=tenant_id, limit=2)
    assert [item.id for item in first] == newest_first[:2]
    position = PagePosition(created_at=first[-1].created_at, id=first[-1].id)
    rest = await repositories.incidents.list_incidents(tenant_id=tenant_id, limit=10, after=position)
    assert [item.id for item in rest] == newest_first[2:]


@pytest.mark.asyncio
async def test_partial_incident_update(repositories) -> None:
    clock = Clock()
    tenant_id, owner_id = await _tenant(repositories, clock)
    incident = await _incident(repositories, clock, tenant_id, owner_id)
    end_time = clock.now()

    updated = await repositories.incidents.update_incident(
        tenant_id=tenant_id,
        incident_id=incident.id,
        changes=IncidentChanges(status="resolved", end_time=end_time, impacted_services=["search"]),
        now=clock.now(),
    )
    assert updated is not None
    assert (updated.title, updated.status) == (incident.title, "resolved")
    assert updated.end_time == end_time
    assert updated.impacted_services == ("search",)
    assert updated.updated_at > incident.updated_at


@pytest.mark.asyncio
async def test_usage_sum_honours_window_and_tenant(repositories) -> None:
    clock = Clock()
    tenant_a, owner_a = await _tenant(repositories, clock)
    tenant_b, owner_b = await _tenant(repositories, clock)
    window_start = clock.now()
    for tenant_id, actor in ((tenant_a, owner_a), (tenant_a, owner_a), (tenant_b, owner_b)):
        await repositories.usage.create_usage_event(
            tenant_id=tenant_id,
            actor_user_id=actor,
            api_key_id=None,
            metric="writes",
            amount=1,
            route="incidents.create",
            trace_id=None,
            created_at=clock.now(),
        )

    assert await repositories.usage.sum_usage_since(tenant_id=tenant_a, metric="writes", since=window_start) == 2
    assert await repositories.usage.sum_usage_since(tenant_id=tenant_b, metric="writes", since=window_start) == 1
    later = clock.now() + timedelta(hours=1)
    assert await repositories.usage.sum_usage_since(tenant_id=tenant_a, metric="writes", since=later) == 0

    assert await repositories.usage.get_tenant_quota(tenant_id=tenant_a) is None
    await repositories.usage.upsert_tenant_quota(tenant_id=tenant_a, daily_write_limit=10, now=clock.now())
    quota = await repositories.usage.upsert_tenant_quota(
        tenant_id=tenant_a, daily_write_limit=25, now=clock.now()
    )
    assert quota.daily_write_limit == 25
    stored = await repositories.usage.get_tenant_quota(tenant_id=tenant_a)
    assert stored is not None and stored.daily_write_limit == 25


@pytest.mark.asyncio
async def test_revoked_keys_drop_out_of_hash_lookup(repositories) -> None:
    clock = Clock()
    tenant_id, owner_id = await _tenant(repositories, clock)
    other_tenant, _ = await _tenant(repositories, clock)
    account = await repositories.api_keys.create_service_account(
        tenant_id=tenant_id,
        name="ci-bot",
        owner_user_id=owner_id,
        created_by_user_id=owner_id,
        now=clock.now(),
    )
    key_hash = hash_api_key("itk_0123456789abcdef")
    record = await repositories.api_keys.create_api_key(
        tenant_id=tenant_id,
        service_account_id=account.id,
        name="deploy hook",
        key_prefix="itk_0123456789ab",
        key_hash=key_hash,
        scopes=["write", "read"],
        created_by_user_id=owner_id,
        now=clock.now(),
    )

    found = await repositories.api_keys.find_active_api_key_by_hash(key_hash)
    assert found is not None
    assert found.api_key.id == record.id
    assert found.service_account.owner_user_id == owner_id
    assert await repositories.api_keys.find_api_key(tenant_id=other_tenant, api_key_id=record.id) is None
    assert (
        await repositories.api_keys.revoke_api_key(
            tenant_id=other_tenant, api_key_id=record.id, revoked_at=clock.now()
        )
        is None
    )

    revoked = await repositories.api_keys.revoke_api_key(
        tenant_id=tenant_id, api_key_id=record.id, revoked_at=clock.now()
    )
    assert revoked is not None and revoked.revoked_at is not None
    assert await repositories.api_keys.find_active_api_key_by_hash(key_hash) is None


@pytest.mark.asyncio
async def test_audit_events_list_newest_first(repositories) -> None:
    clock = Clock()
    tenant_id, owner_id = await _tenant(repositories, clock)
    other_tenant, _ = await _tenant(repositories, clock)
    for action in ("incident.created", "incident.updated"):
        await repositories.audit.create_event(
            tenant_id=tenant_id,
            actor_user_id=owner_id,
            action=action,
            target_type="incident",
            target_id=str(uuid4()),
            metadata={"severity": "SEV2"},
            trace_id="req-1",
            ip_address="203.0.113.7",
            user_agent="pytest",
            now=clock.now(),
        )

    events = await repositories.audit.list_events(tenant_id=tenant_id, limit=10)
    assert [event.action for event in events] == ["incident.updated", "incident.created"]
    assert events[0].metadata == {"severity": "SEV2"}
    assert await repositories.audit.list_events(tenant_id=other_tenant, limit=10) == []
