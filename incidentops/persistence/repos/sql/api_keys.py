from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.domain import entities
from incidentops.domain.models import ApiKey, ServiceAccount
from incidentops.persistence.guards import tenant_predicate
from incidentops.persistence.repos.sql.mappers import api_key_from_row, service_account_from_row


class SqlApiKeyRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_service_account(
        self,
        *,
        tenant_id: str,
        name: str,
        owner_user_id: str,
        created_by_user_id: str,
        now: datetime,
    ) -> entities.ServiceAccount:
        tenant_predicate(ServiceAccount, tenant_id)
        row = ServiceAccount(
            id=str(uuid4()),
            tenant_id=tenant_id,
            name=name,
            owner_user_id=owner_user_id,
            created_by_user_id=created_by_user_id,
            revoked_at=None,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return service_account_from_row(row)

    async def list_service_accounts(self, *, tenant_id: str) -> list[entities.ServiceAccount]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ServiceAccount)
                .where(tenant_predicate(ServiceAccount, tenant_id))
                .order_by(ServiceAccount.created_at.desc(), ServiceAccount.id.desc())
            )
            return [service_account_from_row(row) for row in result.scalars().all()]

    async def find_service_account(
        self, *, tenant_id: str, service_account_id: str
    ) -> entities.ServiceAccount | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ServiceAccount).where(
                    tenant_predicate(ServiceAccount, tenant_id),
                    ServiceAccount.id == service_account_id,
                )
            )
            row = result.scalar_one_or_none()
            return service_account_from_row(row) if row else None

    async def create_api_key(
        self,
        *,
        tenant_id: str,
        service_account_id: str,
        name: str,
        key_prefix: str,
        key_hash: str,
        scopes: Iterable[str],
        created_by_user_id: str,
        now: datetime,
    ) -> entities.ApiKeyRecord:
        tenant_predicate(ApiKey, tenant_id)
        row = ApiKey(
            id=str(uuid4()),
            tenant_id=tenant_id,
            service_account_id=service_account_id,
            name=name,
            key_prefix=key_prefix,
            key_hash=key_hash,
            scopes=list(scopes),
            created_by_user_id=created_by_user_id,
            last_used_at=None,
            revoked_at=None,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return api_key_from_row(row)

    async def list_api_keys(self, *, tenant_id: str) -> list[entities.ApiKeyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey)
                .where(tenant_predicate(ApiKey, tenant_id))
                .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
            )
            return [api_key_from_row(row) for row in result.scalars().all()]

    async def find_api_key(
        self, *, tenant_id: str, api_key_id: str
    ) -> entities.ApiKeyRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(tenant_predicate(ApiKey, tenant_id), ApiKey.id == api_key_id)
            )
            row = result.scalar_one_or_none()
            return api_key_from_row(row) if row else None

    async def revoke_api_key(
        self, *, tenant_id: str, api_key_id: str, revoked_at: datetime
    ) -> entities.ApiKeyRecord | None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ApiKey).where(tenant_predicate(ApiKey, tenant_id), ApiKey.id == api_key_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                # Revocation is idempotent; the first timestamp wins.
                if row.revoked_at is None:
                    row.revoked_at = revoked_at
                return api_key_from_row(row)

    async def find_active_api_key_by_hash(self, key_hash: str) -> entities.ApiKeyAuthRecord | None:
        # Credential lookup precedes tenant resolution, so this is the one hash-keyed read.
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey, ServiceAccount)
                .join(ServiceAccount, ServiceAccount.id == ApiKey.service_account_id)
                .where(
                    ApiKey.key_hash == key_hash,
                    ApiKey.revoked_at.is_(None),
                    ServiceAccount.revoked_at.is_(None),
                    ServiceAccount.tenant_id == ApiKey.tenant_id,
                )
            )
            row = result.first()
            if row is None:
                return None
            api_key, account = row
            return entities.ApiKeyAuthRecord(
                api_key=api_key_from_row(api_key),
                service_account=service_account_from_row(account),
            )

    async def mark_api_key_used(self, *, tenant_id: str, api_key_id: str, used_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ApiKey)
                .where(tenant_predicate(ApiKey, tenant_id), ApiKey.id == api_key_id)
                .values(last_used_at=used_at)
            )
            await session.commit()
