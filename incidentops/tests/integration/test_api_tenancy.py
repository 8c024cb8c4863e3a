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


@pytest.mark.asyncio
async def test_create_and_list_tenants(client) -> None:
    user = await signup(client, "alice@acme.io")
    response = await client.post("/v1/tenants", json={"name": "Acme Ops"}, headers=user.headers)
    assert response.status_code == 201
    data = data_of(response)
    assert data["membership"]["role"] == "Owner"
    assert data["active_tenant_id"] == data["tenant"]["id"]
    assert data["tenant"]["slug"].startswith("acme-ops-")

    listed = data_of(await client.get("/v1/tenants"))
    assert listed["active_tenant_id"] == data["tenant"]["id"]
    assert [item["membership"]["role"] for item in listed["tenants"]] == ["Owner"]


@pytest.mark.asyncio
async def test_tenant_scoped_routes_need_an_active_tenant(client) -> None:
    await signup(client, "alice@acme.io")
    response = await client.get("/v1/incidents")
    assert response.status_code == 400
    assert error_of(response)["code"] == "TENANT_CONTEXT_REQUIRED"


@pytest.mark.asyncio
async def test_switching_to_a_foreign_tenant_looks_missing(make_client) -> None:
    alice_client = await make_client()
    alice = await signup(alice_client, "alice@acme.io")
    acme_id = await create_tenant(alice_client, alice, "Acme Ops")

    bob_client = await make_client()
    bob = await signup(bob_client, "bob@globex.dev")
    globex_id = await create_tenant(bob_client, bob, "Globex Ops")

    foreign = await bob_client.post(f"/v1/tenants/{acme_id}/switch", headers=bob.headers)
    absent = await bob_client.post(f"/v1/tenants/{uuid4()}/switch", headers=bob.headers)
    assert foreign.status_code == absent.status_code == 404
    assert error_of(foreign) == error_of(absent)

    own = await bob_client.post(f"/v1/tenants/{globex_id}/switch", headers=bob.headers)
    assert own.status_code == 200
    assert data_of(own)["active_tenant_id"] == globex_id


@pytest.mark.asyncio
async def test_cross_tenant_incident_reads_are_indistinguishable(make_client) -> None:
    alice_client = await make_client()
    alice = await signup(alice_client, "alice@acme.io")
    await create_tenant(alice_client, alice, "Acme Ops")
    incident_id = data_of(await declare_incident(alice_client, alice.headers))["incident"]["id"]

    bob_client = await make_client()
    bob = await signup(bob_client, "bob@globex.dev")
    await create_tenant(bob_client, bob, "Globex Ops")

    foreign = await bob_client.get(f"/v1/incidents/{incident_id}")
    absent = await bob_client.get(f"/v1/incidents/{uuid4()}")
    assert foreign.status_code == absent.status_code == 404
    assert error_of(foreign) == error_of(absent)
    assert error_of(foreign)["code"] == "INCIDENT_NOT_FOUND"

    patched = await bob_client.patch(
        f"/v1/incidents/{incident_id}", json={"title": "Hijacked title"}, headers=bob.headers
    )
    assert patched.status_code == 404
    assert error_of(patched) == error_of(absent)

    # The incident is untouched in its own tenant.
    own = data_of(await alice_client.get(f"/v1/incidents/{incident_id}"))
    assert own["incident"]["title"] == "Checkout latency spike"


@pytest.mark.asyncio
async def test_invites_assign_roles(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)

    viewer_client = await make_client()
    viewer = await invite_and_join(
        owner_client, owner, viewer_client, tenant_id=tenant_id, email="vic@acme.io", role="Viewer"
    )
    listed = data_of(await viewer_client.get("/v1/tenants"))
    assert listed["active_tenant_id"] == tenant_id
    assert listed["tenants"][0]["membership"]["role"] == "Viewer"

    # Viewers cannot invite anyone.
    denied = await viewer_client.post(
        f"/v1/tenants/{tenant_id}/invites",
        json={"email": "eve@acme.io", "role": "Admin"},
        headers=viewer.headers,
    )
    assert denied.status_code == 403
    assert error_of(denied)["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_invite_tokens_are_bound_to_the_invited_email(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    invite = await owner_client.post(
        f"/v1/tenants/{tenant_id}/invites",
        json={"email": "bob@acme.io", "role": "Responder"},
        headers=owner.headers,
    )
    token = data_of(invite)["invite_token"]

    mallory_client = await make_client()
    mallory = await signup(mallory_client, "mallory@acme.io")
    response = await mallory_client.post(
        "/v1/tenants/invites/accept", json={"token": token}, headers=mallory.headers
    )
    assert response.status_code == 400
    assert error_of(response)["code"] == "INVITE_INVALID"


@pytest.mark.asyncio
async def test_viewer_gets_forbidden_only_for_existing_incidents(make_client) -> None:
    owner_client = await make_client()
    owner = await signup(owner_client, "alice@acme.io")
    tenant_id = await create_tenant(owner_client, owner)
    incident_id = data_of(await declare_incident(owner_client, owner.headers))["incident"]["id"]

    viewer_client = await make_client()
    viewer = await invite_and_join(
        owner_client, owner, viewer_client, tenant_id=tenant_id, email="vic@acme.io", role="Viewer"
    )
    existing = await viewer_client.patch(
        f"/v1/incidents/{incident_id}", json={"title": "Renamed title"}, headers=viewer.headers
    )
    assert existing.status_code == 403
    assert error_of(existing)["code"] == "PERMISSION_DENIED"

    missing = await viewer_client.patch(
        f"/v1/incidents/{uuid4()}", json={"title": "Renamed title"}, headers=viewer.headers
    )
    assert missing.status_code == 404
    assert error_of(missing)["code"] == "INCIDENT_NOT_FOUND"


_CHILD_ROUTES = [
    ("POST", "timeline-events", {"event_time": "2026-10-01T09:00:00Z", "event_type": "detection", "message": "noted"}),
    ("GET", "timeline-events", None),
    ("POST", "tasks", {"title": "Hijacked task"}),
    ("GET", "tasks", None),
    ("PATCH", "tasks/{task_id}", {"status": "completed"}),
    ("POST", "status-updates", {"audience": "internal", "message": "Hijacked update"}),
    ("GET", "status-updates", None),
]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("method", "suffix", "payload"),
    _CHILD_ROUTES,
    ids=[f"{method} {suffix}" for method, suffix, _ in _CHILD_ROUTES],
)
async def test_cross_tenant_incident_children_are_indistinguishable(
    make_client, method, suffix, payload
) -> None:
    alice_client = await make_client()
    alice = await signup(alice_client, "alice@acme.io")
    await create_tenant(alice_client, alice, "Acme Ops")
    incident_id = data_of(await declare_incident(alice_client, alice.headers))["incident"]["id"]
    base = f"/v1/incidents/{incident_id}"
    task = data_of(
        await alice_client.post(f"{base}/tasks", json={"title": "Roll back deploy"}, headers=alice.headers)
    )["task"]
    event = await alice_client.post(
        f"{base}/timeline-events",
        json={"event_time": "2026-10-01T09:10:00Z", "event_type": "mitigation", "message": "rolled back"},
        headers=alice.headers,
    )
    assert event.status_code == 201
    update = await alice_client.post(
        f"{base}/status-updates",
        json={
            "audience": "internal",
            "message": "Rollback in progress.",
            "published_at": "2026-10-01T09:15:00Z",
        },
        headers=alice.headers,
    )
    assert update.status_code == 201

    bob_client = await make_client()
    bob = await signup(bob_client, "bob@globex.dev")
    globex_id = await create_tenant(bob_client, bob, "Globex Ops")
    viewer_client = await make_client()
    viewer = await invite_and_join(
        bob_client, bob, viewer_client, tenant_id=globex_id, email="vic@globex.dev", role="Viewer"
    )

    path = suffix.format(task_id=task["id"])
    # Owners and viewers of another tenant both see a missing incident, never a permission error.
    for client, user in ((bob_client, bob), (viewer_client, viewer)):
        foreign = await client.request(
            method, f"{base}/{path}", json=payload, headers=user.headers
        )
        absent = await client.request(
            method, f"/v1/incidents/{uuid4()}/{path}", json=payload, headers=user.headers
        )
        assert foreign.status_code == absent.status_code == 404
        assert error_of(foreign) == error_of(absent)
        assert error_of(foreign)["code"] == "INCIDENT_NOT_FOUND"

    # Nothing changed in the owning tenant.
    tasks = data_of(await alice_client.get(f"{base}/tasks"))["tasks"]
    assert [(item["id"], item["title"], item["status"]) for item in tasks] == [
        (task["id"], "Roll back deploy", "open")
    ]
    events = data_of(await alice_client.get(f"{base}/timeline-events"))["events"]
    assert [item["event_type"] for item in events] == ["mitigation"]
    updates = data_of(await alice_client.get(f"{base}/status-updates"))["status_updates"]
    assert [item["message"] for item in updates] == ["Rollback in progress."]
