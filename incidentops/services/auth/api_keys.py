from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from incidentops.core.errors import NotFound, ValidationError
from incidentops.domain.entities import API_KEY_SCOPES, ApiKeyRecord, ServiceAccount
from incidentops.persistence.repos.base import ApiKeyRepository, TenantRepository
from incidentops.services.tenancy import TenantIsolationGuard


logger = logging.getLogger(__name__)

API_KEY_PREFIX = "itk_"
KEY_PREFIX_LENGTH = 16
DEFAULT_SCOPES: tuple[str, ...] = ("read",)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    # Keep a readable prefix so operators can match a key to its record.
    raw_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return raw_key, raw_key[:KEY_PREFIX_LENGTH], hash_api_key(raw_key)


def looks_like_api_key(raw_key: str | None) -> bool:
    return bool(raw_key) and raw_key.startswith(API_KEY_PREFIX)


def normalize_scopes(scopes: Iterable[str] | None) -> tuple[str, ...]:
    # Deduplicate while keeping the caller's order; empty input means read-only.
    if scopes is None:
        return DEFAULT_SCOPES
    normalized: list[str] = []
    for scope in scopes:
        value = str(scope).strip().lower()
        if value not in API_KEY_SCOPES:
            raise ValidationError(
                f"Unsupported API key scope: {scope}", code="API_KEY_SCOPE_INVALID"
            )
        if value not in normalized:
            normalized.append(value)
    return tuple(normalized) or DEFAULT_SCOPES


def redact_secret(raw_key: str) -> str:
    # Enough of the key to recognise it in logs, never enough to use it.
    if len(raw_key) <= 12:
        return "***"
    return f"{raw_key[:8]}...{raw_key[-4:]}"


@dataclass(frozen=True)
class CreatedApiKey:
    # The raw secret is only ever available on this object, once.
    record: ApiKeyRecord
    secret: str


@dataclass(frozen=True)
class AuthenticatedApiKey:
    api_key_id: str
    tenant_id: str
    user_id: str
    scopes: tuple[str, ...]


class ApiKeyService:
    def __init__(
        self,
        api_keys: ApiKeyRepository,
        tenants: TenantRepository,
        *,
        time_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._api_keys = api_keys
        self._tenants = tenants
        self._guard = TenantIsolationGuard(tenants)
        self._now = time_provider

    async def create_service_account(
        self,
        *,
        user_id: str,
        tenant_id: str,
        name: str,
        owner_user_id: str | None = None,
    ) -> ServiceAccount:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "api_keys.manage")
        cleaned = name.strip()
        if len(cleaned) < 3:
            raise ValidationError(
                "Service account name must be at least 3 characters.",
                code="SERVICE_ACCOUNT_NAME_INVALID",
            )
        owner = owner_user_id or user_id
        # The owner's membership is what keeps the account's keys alive.
        if await self._tenants.get_membership(tenant_id, owner) is None:
            raise ValidationError(
                "Service account owner must be a tenant member.",
                code="SERVICE_ACCOUNT_OWNER_INVALID",
            )
        return await self._api_keys.create_service_account(
            tenant_id=tenant_id,
            name=cleaned,
            owner_user_id=owner,
            created_by_user_id=user_id,
            now=self._now(),
        )

    async def list_service_accounts(self, *, user_id: str, tenant_id: str) -> list[ServiceAccount]:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "api_keys.manage")
        return await self._api_keys.list_service_accounts(tenant_id=tenant_id)

    async def create_api_key(
        self,
        *,
        user_id: str,
        tenant_id: str,
        service_account_id: str,
        name: str,
        scopes: Iterable[str] | None = None,
    ) -> CreatedApiKey:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._guard.resolve_then_authorize(
            subject,
            lambda: self._api_keys.find_service_account(
                tenant_id=tenant_id, service_account_id=service_account_id
            ),
            ("api_keys.manage",),
            not_found_code="SERVICE_ACCOUNT_NOT_FOUND",
            not_found_message="Service account not found.",
        )
        cleaned = name.strip()
        if len(cleaned) < 3:
            raise ValidationError(
                "API key name must be at least 3 characters.", code="API_KEY_NAME_INVALID"
            )
        normalized_scopes = normalize_scopes(scopes)
        raw_key, key_prefix, key_hash = generate_api_key()
        record = await self._api_keys.create_api_key(
            tenant_id=tenant_id,
            service_account_id=service_account_id,
            name=cleaned,
            key_prefix=key_prefix,
            key_hash=key_hash,
            scopes=normalized_scopes,
            created_by_user_id=user_id,
            now=self._now(),
        )
        logger.info(
            "api_key_created tenant_id=%s api_key_id=%s key=%s",
            tenant_id,
            record.id,
            redact_secret(raw_key),
        )
        return CreatedApiKey(record=record, secret=raw_key)

    async def list_api_keys(self, *, user_id: str, tenant_id: str) -> list[ApiKeyRecord]:
        await self._guard.authorize_tenant_action(user_id, tenant_id, "api_keys.manage")
        return await self._api_keys.list_api_keys(tenant_id=tenant_id)

    async def revoke_api_key(self, *, user_id: str, tenant_id: str, api_key_id: str) -> ApiKeyRecord:
        subject = await self._guard.member_subject(user_id, tenant_id)
        await self._guard.resolve_then_authorize(
            subject,
            lambda: self._api_keys.find_api_key(tenant_id=tenant_id, api_key_id=api_key_id),
            ("api_keys.manage",),
            not_found_code="API_KEY_NOT_FOUND",
            not_found_message="API key not found.",
        )
        record = await self._api_keys.revoke_api_key(
            tenant_id=tenant_id, api_key_id=api_key_id, revoked_at=self._now()
        )
        if record is None:
            raise NotFound("API key not found.", code="API_KEY_NOT_FOUND")
        return record

    async def authenticate_api_key(self, raw_key: str) -> AuthenticatedApiKey | None:
        # Anything without our prefix is rejected before touching storage.
        if not looks_like_api_key(raw_key):
            return None
        found = await self._api_keys.find_active_api_key_by_hash(hash_api_key(raw_key))
        if found is None:
            return None
        api_key = found.api_key
        owner_user_id = found.service_account.owner_user_id
        # Keys die with their owner's membership.
        if await self._tenants.get_membership(api_key.tenant_id, owner_user_id) is None:
            return None
        try:
            await self._api_keys.mark_api_key_used(
                tenant_id=api_key.tenant_id, api_key_id=api_key.id, used_at=self._now()
            )
        except Exception:  # noqa: BLE001 - last-used bookkeeping must not block auth
            logger.warning(
                "api_key_mark_used_failed api_key_id=%s tenant_id=%s",
                api_key.id,
                api_key.tenant_id,
                exc_info=True,
            )
        return AuthenticatedApiKey(
            api_key_id=api_key.id,
            tenant_id=api_key.tenant_id,
            user_id=owner_user_id,
            scopes=api_key.scopes,
        )
