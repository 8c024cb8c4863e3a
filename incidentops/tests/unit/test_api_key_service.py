from __future__ import annotations

import logging
from uuid import uuid4

import pytest

from incidentops.core.errors import NotFound, PermissionDenied, ValidationError
from incidentops.persistence.repos.factory import build_memory_repositories
from incidentops.services.auth.api_keys import (
    API_KEY_PREFIX,
    ApiKeyService,
    generate_api_key,
    hash_api_key,
    normalize_scopes,
    redact_secret,
)
from incidentops.tests.utils.clock import Clock
from incidentops.tests.utils.seed import seed_member, seed_tenant, seed_user


async def _setup():
    repositories = build_memory_repositories()
    owner = await seed_user(repositories)
    tenant_id = (await seed_tenant(repositories, owner_user_id=owner.id)).tenant.id
    service = ApiKeyService(repositories.api_keys, repositories.tenants, time_provider=Clock().now)
    return repositories, service, owner, tenant_id


def test_generated_keys_carry_prefix_and_store_only_hash() -> None:
    raw_key, key_prefix, key_hash = generate_api_key()
    assert raw_key.startswith(API_KEY_PREFIX)
    assert raw_key.startswith(key_prefix)
    assert key_hash == hash_api_key(raw_key)
    assert raw_key not in key_hash


def test_normalize_scopes() -> None:
    assert normalize_scopes(None) == ("read",)
    assert normalize_scopes([]) == ("read",)
    assert normalize_scopes(["WRITE", "read", "write"]) == ("write", "read")
    with pytest.raises(ValidationError) as exc_info:
        normalize_scopes(["admin"])
    assert exc_info.value.code == "API_KEY_SCOPE_INVALID"


def test_redact_secret_never_returns_the_full_key() -> None:
    raw_key, _, _ = generate_api_key()
    redacted = redact_secret(raw_key)
    assert redacted != raw_key
    assert redacted.startswith(raw_key[:8])
    assert redact_secret("short") == "***"


@pytest.mark.asyncio
async def test_key_lifecycle_create_authenticate_revoke(caplog: pytest.LogCaptureFixture) -> None:
    _, service, owner, tenant_id = await _setup()
    account = await service.create_service_account(
        user_id=owner.id, tenant_id=tenant_id, name="deploy-bot"
    )
    with caplog.at_level(logging.INFO, logger="incidentops.services.auth.api_keys"):
        created = await service.create_api_key(
            user_id=owner.id,
            tenant_id=tenant_id,
            service_account_id=account.id,
            name="ci pipeline",
            scopes=["read", "write"],
        )
    assert created.secret not in caplog.text
    assert created.record.scopes == ("read", "write")

    principal = await service.authenticate_api_key(created.secret)
    assert principal is not None
    assert (principal.tenant_id, principal.user_id) == (tenant_id, owner.id)

    listed = await service.list_api_keys(user_id=owner.id, tenant_id=tenant_id)
    assert [record.id for record in listed] == [created.record.id]
    assert listed[0].last_used_at is not None

    revoked = await service.revoke_api_key(
        user_id=owner.id, tenant_id=tenant_id, api_key_id=created.record.id
    )
    assert revoked.revoked_at is not None
    assert await service.authenticate_api_key(created.secret) is None


@pytest.mark.asyncio
async def test_unknown_or_malformed_keys_do_not_authenticate() -> None:
    _, service, _, _ = await _setup()
    assert await service.authenticate_api_key("not-a-key") is None
    assert await service.authenticate_api_key(f"{API_KEY_PREFIX}unknown") is None


@pytest.mark.asyncio
async def test_missing_resources_are_reported_before_permissions() -> None:
    repositories, service, owner, tenant_id = await _setup()
    viewer, _ = await seed_member(
        repositories, tenant_id=tenant_id, role="Viewer", invited_by_user_id=owner.id
    )
    account = await service.create_service_account(
        user_id=owner.id, tenant_id=tenant_id, name="deploy-bot"
    )
    created = await service.create_api_key(
        user_id=owner.id, tenant_id=tenant_id, service_account_id=account.id, name="ci key"
    )

    with pytest.raises(NotFound) as missing:
        await service.revoke_api_key(user_id=viewer.id, tenant_id=tenant_id, api_key_id=str(uuid4()))
    assert missing.value.code == "API_KEY_NOT_FOUND"

    with pytest.raises(PermissionDenied):
        await service.revoke_api_key(
            user_id=viewer.id, tenant_id=tenant_id, api_key_id=created.record.id
        )

    with pytest.raises(NotFound) as missing_account:
        await service.create_api_key(
            user_id=viewer.id,
            tenant_id=tenant_id,
            service_account_id=str(uuid4()),
            name="ci key",
        )
    assert missing_account.value.code == "SERVICE_ACCOUNT_NOT_FOUND"


@pytest.mark.asyncio
async def test_keys_from_another_tenant_are_not_found() -> None:
    repositories, service, owner, tenant_id = await _setup()
    account = await service.create_service_account(
        user_id=owner.id, tenant_id=tenant_id, name="deploy-bot"
    )
    created = await service.create_api_key(
        user_id=owner.id, tenant_id=tenant_id, service_account_id=account.id, name="ci key"
    )
    other_owner = await seed_user(repositories)
    other_tenant_id = (await seed_tenant(repositories, owner_user_id=other_owner.id)).tenant.id

    with pytest.raises(NotFound):
        await service.revoke_api_key(
            user_id=other_owner.id, tenant_id=other_tenant_id, api_key_id=created.record.id
        )
    with pytest.raises(NotFound) as exc_info:
        await service.list_api_keys(user_id=other_owner.id, tenant_id=tenant_id)
    assert exc_info.value.code == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_service_account_owner_must_be_a_member() -> None:
    repositories, service, owner, tenant_id = await _setup()
    outsider = await seed_user(repositories)
    with pytest.raises(ValidationError) as exc_info:
        await service.create_service_account(
            user_id=owner.id, tenant_id=tenant_id, name="deploy-bot", owner_user_id=outsider.id
        )
    assert exc_info.value.code == "SERVICE_ACCOUNT_OWNER_INVALID"


@pytest.mark.asyncio
async def test_last_used_failure_does_not_block_authentication(
    caplog: pytest.LogCaptureFixture,
) -> None:
    repositories, service, owner, tenant_id = await _setup()
    account = await service.create_service_account(
        user_id=owner.id, tenant_id=tenant_id, name="deploy-bot"
    )
    created = await service.create_api_key(
        user_id=owner.id, tenant_id=tenant_id, service_account_id=account.id, name="ci key"
    )

    async def _fail(**kwargs) -> None:
        raise ConnectionError("write timeout")

    repositories.api_keys.mark_api_key_used = _fail  # type: ignore[method-assign]
    with caplog.at_level(logging.WARNING, logger="incidentops.services.auth.api_keys"):
        principal = await service.authenticate_api_key(created.secret)
    assert principal is not None
    assert "api_key_mark_used_failed" in caplog.text
