from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.core.errors import Conflict
from incidentops.domain import entities
from incidentops.domain.models import Membership, Tenant, TenantInvite
from incidentops.persistence.guards import tenant_predicate
from incidentops.persistence.repos.sql.mappers import (
    as_utc,
    invite_from_row,
    membership_from_row,
    tenant_from_row,
)


class SqlTenantRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_tenant_with_owner(
        self, *, name: str, slug: str, owner_user_id: str, now: datetime
    ) -> entities.TenantMembership:
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
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    session.add(tenant)
                    # Flush the tenant before the membership to satisfy FK constraints.
                    await session.flush()
                    session.add(membership)
            except IntegrityError as exc:
                raise Conflict("Tenant slug already exists.", code="TENANT_SLUG_TAKEN") from exc
            return entities.TenantMembership(
                tenant=tenant_from_row(tenant), membership=membership_from_row(membership)
            )

    async def list_memberships_for_user(self, user_id: str) -> list[entities.TenantMembership]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Tenant, Membership)
                .join(Membership, Membership.tenant_id == Tenant.id)
                .where(Membership.user_id == user_id)
                .order_by(Tenant.name.asc(), Tenant.id.asc())
            )
            return [
                entities.TenantMembership(
                    tenant=tenant_from_row(tenant), membership=membership_from_row(membership)
                )
                for tenant, membership in result.all()
            ]

    async def get_membership(self, tenant_id: str, user_id: str) -> entities.Membership | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Membership).where(
                    tenant_predicate(Membership, tenant_id),
                    Membership.user_id == user_id,
                )
            )
            row = result.scalar_one_or_none()
            return membership_from_row(row) if row else None

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
    ) -> entities.TenantInvite:
        tenant_predicate(TenantInvite, tenant_id)
        row = TenantInvite(
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
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return invite_from_row(row)

    async def accept_invite(
        self, *, token_hash: str, user_id: str, user_email: str, now: datetime
    ) -> entities.AcceptedInvite | None:
        # Marking the invite and writing the membership commit or roll back together.
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(TenantInvite)
                    .where(TenantInvite.token_hash == token_hash)
                    .with_for_update()
                )
                invite = result.scalar_one_or_none()
                if invite is None or invite.accepted_at is not None:
                    return None
                if as_utc(invite.expires_at) < now:
                    return None
                if invite.email.lower() != user_email.strip().lower():
                    return None
                tenant = await session.get(Tenant, invite.tenant_id)
                if tenant is None:
                    return None

                invite.accepted_at = now
                invite.accepted_by_user_id = user_id
                existing = (
                    await session.execute(
                        select(Membership).where(
                            tenant_predicate(Membership, invite.tenant_id),
                            Membership.user_id == user_id,
                        )
                    )
                ).scalar_one_or_none()
                if existing is None:
                    membership = Membership(
                        id=str(uuid4()),
                        tenant_id=invite.tenant_id,
                        user_id=user_id,
                        role=invite.role,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(membership)
                else:
                    existing.role = invite.role
                    existing.updated_at = now
                    membership = existing
                await session.flush()
                return entities.AcceptedInvite(
                    tenant=tenant_from_row(tenant),
                    membership=membership_from_row(membership),
                    invite=invite_from_row(invite),
                )
