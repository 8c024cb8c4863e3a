from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from httpx import AsyncClient, Response


DEFAULT_PASSWORD = "correct-horse-battery"


@dataclass
class SessionUser:
    # A signed-in browser session: the user id plus the CSRF token to echo on writes.
    user_id: str
    email: str
    csrf_token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"X-CSRF-Token": self.csrf_token}


def error_of(response: Response) -> dict[str, Any]:
    return response.json()["error"]


def data_of(response: Response) -> Any:
    return response.json()["data"]


async def fetch_csrf_token(client: AsyncClient) -> str:
    response = await client.get("/v1/auth/me")
    assert response.status_code == 200, response.text
    return data_of(response)["csrf_token"]


async def signup(
    client: AsyncClient, email: str, password: str = DEFAULT_PASSWORD
) -> SessionUser:
    csrf_token = await fetch_csrf_token(client)
    response = await client.post(
        "/v1/auth/signup",
        json={"email": email, "password": password},
        headers={"X-CSRF-Token": csrf_token},
    )
    assert response.status_code == 201, response.text
    data = data_of(response)
    return SessionUser(user_id=data["user"]["id"], email=email, csrf_token=data["csrf_token"])


async def create_tenant(client: AsyncClient, user: SessionUser, name: str = "Acme Ops") -> str:
    response = await client.post("/v1/tenants", json={"name": name}, headers=user.headers)
    assert response.status_code == 201, response.text
    return data_of(response)["tenant"]["id"]


async def invite_and_join(
    owner_client: AsyncClient,
    owner: SessionUser,
    member_client: AsyncClient,
    *,
    tenant_id: str,
    email: str,
    role: str,
) -> SessionUser:
    # Requires invites_expose_token so the raw token comes back in the response.
    response = await owner_client.post(
        f"/v1/tenants/{tenant_id}/invites",
        json={"email": email, "role": role},
        headers=owner.headers,
    )
    assert response.status_code == 201, response.text
    token = data_of(response)["invite_token"]
    member = await signup(member_client, email)
    accepted = await member_client.post(
        "/v1/tenants/invites/accept", json={"token": token}, headers=member.headers
    )
    assert accepted.status_code == 200, accepted.text
    return member


async def declare_incident(
    client: AsyncClient,
    headers: dict[str, str],
    *,
    title: str = "Checkout latency spike",
    severity: str = "SEV2",
) -> Response:
    return await client.post(
        "/v1/incidents",
        json={
            "title": title,
            "description": "p99 above 2s",
            "severity": severity,
            "start_time": "2026-10-01T08:55:00Z",
            "impacted_services": ["checkout", "payments"],
        },
        headers=headers,
    )
