from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from incidentops.core.errors import Conflict
from incidentops.domain.entities import (
    AcceptedInvite,
    Membership,
    Tenant,
    TenantInvite,
    TenantMembership,
)
from incidentops.persistence.guards import require_tenant_id


class InMemoryTenantRepository:
    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._tenant_ids_by_slug: dict[str, str] = {}
        self._memberships: dict[tuple[str, str], Membership] = {}
        self._invites: dict[str, TenantInvite] = {}
        self._invite_ids_by_token_hash: dict[str, str] = {}

    async def create_tenant_with_owner(
        self, *, name: str, slug: str, owner_user_id: str, now: datetime
    ) -> TenantMembership:
        if slug in self._tenant_ids_by_slug:
            raise Conflict("Tenant slug already exists.", code="TENANT_SLUG_TAKEN")
        tenant = Tenant(
            id=str(uuid4()),
            name=name,
            slug=slug,
            created_by_user_id=owner_user_id,
            created_at=now,
            updated_at=now,
        )
        membership = Membership(
            id=str(uuid4()),
            tenant_id=tenant.id,
            user_id=owner_user_id,
            role="Owner",
            created_at=now,
            updated_at=now,
        )
        self._tenants[tenant.id] = tenant
        self._tenant_ids_by_slug[slug] = tenant.id
        self._memberships[(tenant.id, owner_user_id)] = membership
        return TenantMembership(tenant=tenant, membership=membership)

    async def list_memberships_for_user(self, user_id: str) -> list[TenantMembership]:
        records = [
            TenantMembership(tenant=self._tenants[membership.tenant_id], membership=membership)
            for membership in self._memberships.values()
            if membership.user_id == user_id and membership.tenant_id in self._tenants
        ]
        records.sort(key=lambda record: (record.tenant.name, record.tenant.id))
        return records

    async def get_membership(self, tenant_id: str, user_id: str) -> Membership | None:
        require_tenant_id(tenant_id)
        return self._memberships.get((tenant_id, user_id))

    async def create_invite(
        self,
        *,
        tenant_id: str,
        email: str,
        role: str,
        invited_by_user_id: str,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> TenantInvite:
        require_tenant_id(tenant_id)
        invite = TenantInvite(
            id=str(uuid4()),
            tenant_id=tenant_id,
            email=email.strip().lower(),
            role=role,
            token_hash=token_hash,
            invited_by_user_id=invited_by_user_id,
            expires_at=expires_at,
            accepted_at=None,
            accepted_by_user_id=None,
            created_at=now,
        )
        self._invites[invite.id] = invite
        self._invite_ids_by_token_hash[token_hash] = invite.id
        return invite

    async def accept_invite(
        self, *, token_hash: str, user_id: str, user_email: str, now: datetime
    ) -> AcceptedInvite | None:
        # Validate every precondition before mutating so a rejection leaves no trace.
        invite_id = self._invite_ids_by_token_hash.get(token_hash)
        invite = self._invites.get(invite_id) if invite_id else None
        if invite is None:
            return None
        if invite.accepted_at is not None or invite.expires_at < now:
            return None
        if invite.email.lower() != user_email.strip().lower():
            return None
        tenant = self._tenants.get(invite.tenant_id)
        if tenant is None:
            return None

        accepted = replace(invite, accepted_at=now, accepted_by_user_id=user_id)
        key = (invite.tenant_id, user_id)
        existing = self._memberships.get(key)
        if existing is None:
            membership = Membership(
                id=str(uuid4()),
                tenant_id=invite.tenant_id,
                user_id=user_id,
                role=invite.role,
                created_at=now,
                updated_at=now,
            )
        else:
            membership = replace(existing, role=invite.role, updated_at=now)
        self._invites[invite.id] = accepted
        self._memberships[key] = membership
        return AcceptedInvite(tenant=tenant, membership=membership, invite=accepted)
