from __future__ import annotations

from uuid import uuid4

import pytest

from incidentops.tests.utils.http import (
    create_tenant,
    data_of,
    declare_incident,
    error_of,
    invite_and_join,
    signup,
)


async def _issue_key(client, owner, tenant_id: str, scopes: list[str]) -> dict:
    account = await client.post(
        f"/v1/tenants/{tenant_id}/service-accounts", json={"name": "ci-bot"}, headers=owner.headers
    )
    assert account.status_code == 201, account.text
    account_id = data_of(account)["service_account"]["id"]
    response = await client.post(
        f"/v1/tenants/{tenant_id}/api-keys",
        json={"service_account_id": account_id, "name": "deploy hook", "scopes": scopes},
        headers=owner.headers,
    )
    assert response.status_code == 201, response.text
    return data_of(response)


@pytest.mark.asyncio
async def test_key_secret_is_shown_once(client) -> None:
    owner = await signup(client, "alice@acme.io")
    tenant_id = await create_tenant(client, owner)
    created = await _issue_key(client, owner, tenant_id, ["read", "write"])
    secret = created["secret"]
    assert secret.startswith(created["api_key"]["key_prefix"])
    assert sorted(created["api_key"]["scopes"]) == ["read", "write"]

    listed = await client.get(f"/v1/tenants/{tenant_id}/api-keys")
    assert listed.status_code == 200
    assert secret not in listed.text
    assert "key_hash" not in listed.text
    assert [item["id"] for item in data_of(listed)["api_keys"]] == [created["api_key"]["id"]]


@pytest.mark.asyncio
async def test_write_key_skips_csrf(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    secret = (await _issue_key(owner_client, owner, tenant_id, ["read", "write"]))["secret"]

    machine = await make_client()
    headers = {"X-API-Key": secret}
    created = await declare_incident(machine, headers)
    assert created.status_code == 201, created.text
    incident = data_of(created)["incident"]
    assert incident["tenant_id"] == tenant_id
    assert incident["declared_by_user_id"] == owner.user_id

    listed = data_of(await machine.get("/v1/incidents", headers=headers))
    assert [item["id"] for item in listed["incidents"]] == [incident["id"]]

    me = data_of(await machine.get("/v1/auth/me", headers=headers))
    assert me["auth_kind"] == "api_key"


@pytest.mark.asyncio
async def test_key_scopes_follow_http_method(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    read_secret = (await _issue_key(owner_client, owner, tenant_id, ["read"]))["secret"]
    write_secret = (await _issue_key(owner_client, owner, tenant_id, ["write"]))["secret"]
    machine = await make_client()

    assert (await machine.get("/v1/incidents", headers={"X-API-Key": read_secret})).status_code == 200
    denied_write = await declare_incident(machine, {"X-API-Key": read_secret})
    assert denied_write.status_code == 403
    assert error_of(denied_write)["code"] == "API_KEY_SCOPE_DENIED"

    denied_read = await machine.get("/v1/incidents", headers={"X-API-Key": write_secret})
    assert denied_read.status_code == 403
    assert error_of(denied_read)["code"] == "API_KEY_SCOPE_DENIED"


@pytest.mark.asyncio
async def test_keys_cannot_manage_credentials(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    secret = (await _issue_key(owner_client, owner, tenant_id, ["read", "write"]))["secret"]
    machine = await make_client()

    listed = await machine.get(f"/v1/tenants/{tenant_id}/api-keys", headers={"X-API-Key": secret})
    assert listed.status_code == 403
    assert error_of(listed)["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_revoked_and_unknown_keys_are_rejected(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    created = await _issue_key(owner_client, owner, tenant_id, ["read", "write"])
    machine = await make_client()
    headers = {"X-API-Key": created["secret"]}
    assert (await machine.get("/v1/incidents", headers=headers)).status_code == 200

    revoked = await owner_client.post(
        f"/v1/tenants/{tenant_id}/api-keys/{created['api_key']['id']}/revoke", headers=owner.headers
    )
    assert revoked.status_code == 200
    assert data_of(revoked)["api_key"]["revoked_at"] is not None

    after = await machine.get("/v1/incidents", headers=headers)
    assert after.status_code == 401
    assert error_of(after)["code"] == "AUTH_INVALID_API_KEY"

    unknown = await machine.get("/v1/incidents", headers={"X-API-Key": "itk_not-a-real-key"})
    assert unknown.status_code == 401
    assert error_of(unknown) == error_of(after)


@pytest.mark.asyncio
async def test_key_management_needs_admin(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    created = await _issue_key(owner_client, owner, tenant_id, ["read"])

    responder_client = await make_client()
    responder = await invite_and_join(
        owner_client, owner, responder_client, tenant_id=tenant_id, email="rob@acme.io", role="Responder"
    )
    existing = await responder_client.post(
        f"/v1/tenants/{tenant_id}/api-keys/{created['api_key']['id']}/revoke",
        headers=responder.headers,
    )
    assert existing.status_code == 403
    missing = await responder_client.post(
        f"/v1/tenants/{tenant_id}/api-keys/{uuid4()}/revoke", headers=responder.headers
    )
    assert missing.status_code == 404
