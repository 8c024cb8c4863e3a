from __future__ import annotations

from datetime import timedelta

import pytest

from incidentops.tests.utils.http import (
    DEFAULT_PASSWORD,
    data_of,
    error_of,
    fetch_csrf_token,
    signup,
)


@pytest.mark.asyncio
async def test_health_is_public_and_echoes_request_id(client) -> None:
    response = await client.get("/v1/health", headers={"X-Request-Id": "req-health-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok"}
    assert body["meta"]["request_id"] == "req-health-1"
    assert body["meta"]["api_version"] == "v1"
    assert response.headers["X-Request-Id"] == "req-health-1"


@pytest.mark.asyncio
async def test_me_is_anonymous_until_signup(client) -> None:
    response = await client.get("/v1/auth/me")
    assert response.status_code == 200
    data = data_of(response)
    assert data["authenticated"] is False
    assert data["csrf_token"]

    user = await signup(client, "alice@acme.io")
    me = data_of(await client.get("/v1/auth/me"))
    assert me["authenticated"] is True
    assert me["auth_kind"] == "session"
    assert me["user"]["id"] == user.user_id
    assert "password_hash" not in me["user"]


@pytest.mark.asyncio
async def test_writes_without_csrf_token_are_rejected(client) -> None:
    user = await signup(client, "alice@acme.io")
    missing = await client.post("/v1/tenants", json={"name": "Acme Ops"})
    assert missing.status_code == 403
    assert error_of(missing)["code"] == "CSRF_TOKEN_INVALID"

    wrong = await client.post(
        "/v1/tenants", json={"name": "Acme Ops"}, headers={"X-CSRF-Token": "forged"}
    )
    assert error_of(wrong)["code"] == "CSRF_TOKEN_INVALID"

    # Non-ASCII header bytes are a mismatch like any other.
    latin1 = await client.post(
        "/v1/tenants",
        json={"name": "Acme Ops"},
        headers={"X-CSRF-Token": "été".encode("latin-1")},
    )
    assert latin1.status_code == 403
    assert error_of(latin1)["code"] == "CSRF_TOKEN_INVALID"

    ok = await client.post("/v1/tenants", json={"name": "Acme Ops"}, headers=user.headers)
    assert ok.status_code == 201


@pytest.mark.asyncio
async def test_signup_validation_and_conflicts(client) -> None:
    csrf_token = await fetch_csrf_token(client)
    headers = {"X-CSRF-Token": csrf_token}

    invalid = await client.post(
        "/v1/auth/signup", json={"email": "not-an-email", "password": DEFAULT_PASSWORD}, headers=headers
    )
    assert invalid.status_code == 400
    error = error_of(invalid)
    assert error["code"] == "VALIDATION_ERROR"
    assert all("input" not in item for item in error["details"]["errors"])

    weak = await client.post(
        "/v1/auth/signup", json={"email": "alice@acme.io", "password": "short"}, headers=headers
    )
    assert weak.status_code == 400
    assert error_of(weak)["code"] == "AUTH_PASSWORD_WEAK"

    await signup(client, "alice@acme.io")
    again = await client.post(
        "/v1/auth/signup",
        json={"email": "Alice@Acme.io", "password": DEFAULT_PASSWORD},
        headers={"X-CSRF-Token": await fetch_csrf_token(client)},
    )
    assert again.status_code == 409
    assert error_of(again)["code"] == "EMAIL_ALREADY_REGISTERED"


@pytest.mark.asyncio
async def test_logout_then_login(client) -> None:
    user = await signup(client, "alice@acme.io")
    logout = await client.post("/v1/auth/logout", headers=user.headers)
    assert logout.status_code == 204
    assert data_of(await client.get("/v1/auth/me"))["authenticated"] is False

    protected = await client.get("/v1/incidents")
    assert protected.status_code == 401
    assert error_of(protected)["code"] == "AUTH_REQUIRED"

    csrf_token = await fetch_csrf_token(client)
    login = await client.post(
        "/v1/auth/login",
        json={"email": "alice@acme.io", "password": DEFAULT_PASSWORD},
        headers={"X-CSRF-Token": csrf_token},
    )
    assert login.status_code == 200
    data = data_of(login)
    assert data["user"]["id"] == user.user_id
    # A fresh session gets a fresh token.
    assert data["csrf_token"] != csrf_token


@pytest.mark.asyncio
async def test_repeated_failures_lock_the_account(make_client, clock) -> None:
    await signup(await make_client(), "alice@acme.io")
    client = await make_client()
    headers = {"X-CSRF-Token": await fetch_csrf_token(client)}

    async def _login(password: str):
        return await client.post(
            "/v1/auth/login", json={"email": "alice@acme.io", "password": password}, headers=headers
        )

    for _ in range(4):
        response = await _login("wrong-password-123")
        assert response.status_code == 401
        assert error_of(response)["code"] == "AUTH_INVALID_CREDENTIALS"

    locked = await _login("wrong-password-123")
    assert locked.status_code == 423
    error = error_of(locked)
    assert error["code"] == "AUTH_ACCOUNT_LOCKED"
    assert "retry_at" in error["details"]
    assert (await _login(DEFAULT_PASSWORD)).status_code == 423

    clock.advance(timedelta(minutes=16))
    assert (await _login(DEFAULT_PASSWORD)).status_code == 200


@pytest.mark.asyncio
async def test_password_reset_flow(make_client) -> None:
    await signup(await make_client(), "alice@acme.io")
    client = await make_client()
    headers = {"X-CSRF-Token": await fetch_csrf_token(client)}

    unknown = await client.post(
        "/v1/auth/password/forgot", json={"email": "nobody@acme.io"}, headers=headers
    )
    assert unknown.status_code == 202
    assert "reset_token" not in data_of(unknown)

    forgot = await client.post(
        "/v1/auth/password/forgot", json={"email": "alice@acme.io"}, headers=headers
    )
    assert forgot.status_code == 202
    data = data_of(forgot)
    assert data["code"] == data_of(unknown)["code"]
    token = data["reset_token"]

    reset = await client.post(
        "/v1/auth/password/reset",
        json={"token": token, "new_password": "a-brand-new-passphrase"},
        headers=headers,
    )
    assert reset.status_code == 204

    reused = await client.post(
        "/v1/auth/password/reset",
        json={"token": token, "new_password": "another-new-passphrase"},
        headers=headers,
    )
    assert reused.status_code == 400
    assert error_of(reused)["code"] == "AUTH_RESET_TOKEN_INVALID"

    login = await client.post(
        "/v1/auth/login",
        json={"email": "alice@acme.io", "password": "a-brand-new-passphrase"},
        headers=headers,
    )
    assert login.status_code == 200
