from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable
from uuid import uuid4

from incidentops.domain.entities import ApiKeyAuthRecord, ApiKeyRecord, ServiceAccount
from incidentops.persistence.guards import require_tenant_id


class InMemoryApiKeyRepository:
    def __init__(self) -> None:
        self._service_accounts: dict[str, ServiceAccount] = {}
        self._api_keys: dict[str, ApiKeyRecord] = {}
        self._api_key_ids_by_hash: dict[str, str] = {}

    async def create_service_account(
        self,
        *,
        tenant_id: str,
        name: str,
        owner_user_id: str,
        created_by_user_id: str,
        now: datetime,
    ) -> ServiceAccount:
        require_tenant_id(tenant_id)
        account = ServiceAccount(
            id=str(uuid4()),
            tenant_id=tenant_id,
            name=name,
            owner_user_id=owner_user_id,
            created_by_user_id=created_by_user_id,
            revoked_at=None,
            created_at=now,
            updated_at=now,
        )
        self._service_accounts[account.id] = account
        return account

    async def list_service_accounts(self, *, tenant_id: str) -> list[ServiceAccount]:
        require_tenant_id(tenant_id)
        accounts = [
            account for account in self._service_accounts.values() if account.tenant_id == tenant_id
        ]
        accounts.sort(key=lambda account: (account.created_at, account.id), reverse=True)
        return accounts

    async def find_service_account(
        self, *, tenant_id: str, service_account_id: str
    ) -> ServiceAccount | None:
        require_tenant_id(tenant_id)
        account = self._service_accounts.get(service_account_id)
        if account is None or account.tenant_id != tenant_id:
            return None
        return account

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
    ) -> ApiKeyRecord:
        require_tenant_id(tenant_id)
        record = ApiKeyRecord(
            id=str(uuid4()),
            tenant_id=tenant_id,
            service_account_id=service_account_id,
            name=name,
            key_prefix=key_prefix,
            scopes=tuple(scopes),
            created_by_user_id=created_by_user_id,
            last_used_at=None,
            revoked_at=None,
            created_at=now,
        )
        self._api_keys[record.id] = record
        self._api_key_ids_by_hash[key_hash] = record.id
        return record

    async def list_api_keys(self, *, tenant_id: str) -> list[ApiKeyRecord]:
        require_tenant_id(tenant_id)
        keys = [record for record in self._api_keys.values() if record.tenant_id == tenant_id]
        keys.sort(key=lambda record: (record.created_at, record.id), reverse=True)
        return keys

    async def find_api_key(self, *, tenant_id: str, api_key_id: str) -> ApiKeyRecord | None:
        require_tenant_id(tenant_id)
        record = self._api_keys.get(api_key_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return record

    async def revoke_api_key(
        self, *, tenant_id: str, api_key_id: str, revoked_at: datetime
    ) -> ApiKeyRecord | None:
        require_tenant_id(tenant_id)
        record = self._api_keys.get(api_key_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        # Revocation is idempotent; the first timestamp wins.
        if record.revoked_at is None:
            record = replace(record, revoked_at=revoked_at)
            self._api_keys[api_key_id] = record
        return record

    async def find_active_api_key_by_hash(self, key_hash: str) -> ApiKeyAuthRecord | None:
        api_key_id = self._api_key_ids_by_hash.get(key_hash)
        record = self._api_keys.get(api_key_id) if api_key_id else None
        if record is None or record.revoked_at is not None:
            return None
        account = self._service_accounts.get(record.service_account_id)
        if account is None or account.revoked_at is not None:
            return None
        return ApiKeyAuthRecord(api_key=record, service_account=account)

    async def mark_api_key_used(self, *, tenant_id: str, api_key_id: str, used_at: datetime) -> None:
        require_tenant_id(tenant_id)
        record = self._api_keys.get(api_key_id)
        if record is None or record.tenant_id != tenant_id:
            return
        self._api_keys[api_key_id] = replace(record, last_used_at=used_at)
