from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from incidentops.domain.entities import Membership, TenantMembership, User
from incidentops.persistence.repos.base import Repositories
from incidentops.services.tenancy import hash_invite_token


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def seed_user(
    repositories: Repositories, *, email: str | None = None, now: datetime | None = None
) -> User:
    # Password hashes are irrelevant below the HTTP layer; store a placeholder.
    return await repositories.auth.create_user(
        email=email or f"user-{uuid4().hex[:8]}@acme.io",
        password_hash="not-a-real-hash",
        now=now or _utc_now(),
    )


async def seed_tenant(
    repositories: Repositories,
    *,
    owner_user_id: str,
    name: str = "Acme Ops",
    now: datetime | None = None,
) -> TenantMembership:
    return await repositories.tenants.create_tenant_with_owner(
        name=name,
        slug=f"acme-{uuid4().hex[:8]}",
        owner_user_id=owner_user_id,
        now=now or _utc_now(),
    )


async def seed_member(
    repositories: Repositories,
    *,
    tenant_id: str,
    role: str,
    invited_by_user_id: str,
    now: datetime | None = None,
) -> tuple[User, Membership]:
    # Go through the invite flow so memberships are created exactly as in production.
    now = now or _utc_now()
    user = await seed_user(repositories, now=now)
    token = uuid4().hex
    await repositories.tenants.create_invite(
        tenant_id=tenant_id,
        email=user.email,
        role=role,
        invited_by_user_id=invited_by_user_id,
        token_hash=hash_invite_token(token),
        expires_at=now + timedelta(hours=1),
        now=now,
    )
    accepted = await repositories.tenants.accept_invite(
        token_hash=hash_invite_token(token), user_id=user.id, user_email=user.email, now=now
    )
    assert accepted is not None
    return user, accepted.membership
