"""Tenant isolation guard.

Every identified-resource operation runs in two phases: resolve the resource
within the caller's active tenant, then evaluate policy. A resource that is
absent and a resource that lives in another tenant both surface as the same
NotFound, so callers can never detect foreign records. Only a resource
confirmed inside the caller's tenant can produce PermissionDenied.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from incidentops.core.config import Settings, get_settings
from incidentops.core.errors import (
    AuthenticationRequired,
    InviteInvalid,
    NotFound,
    TenantContextError,
    ValidationError,
)
from incidentops.domain.entities import ORG_ROLES, Membership, TenantInvite, TenantMembership
from incidentops.persistence.repos.base import AuthRepository, TenantRepository
from incidentops.services.auth.context import AuthContext
from incidentops.services.authz.policy import PolicySubject, ResourceContext, assert_authorized


T = TypeVar("T")

TENANT_NOT_FOUND_MESSAGE = "Tenant not found."
_SLUG_INVALID_CHARS = re.compile(r"[^a-z0-9]+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_active_tenant(context: AuthContext, session_tenant_id: str | None = None) -> str:
    # API keys are bound to one tenant; sessions use the last switched tenant.
    tenant_id = context.tenant_id or session_tenant_id
    if not tenant_id:
        raise TenantContextError(
            "Active tenant is required for this operation.", code="TENANT_CONTEXT_REQUIRED"
        )
    try:
        UUID(str(tenant_id))
    except ValueError as exc:
        raise TenantContextError(
            "Active tenant context is invalid.", code="TENANT_CONTEXT_INVALID"
        ) from exc
    return str(tenant_id)


def subject_from_membership(membership: Membership) -> PolicySubject:
    return PolicySubject(
        user_id=membership.user_id,
        tenant_id=membership.tenant_id,
        roles=(membership.role,),
    )


class TenantIsolationGuard:
    def __init__(self, tenants: TenantRepository) -> None:
        self._tenants = tenants

    async def require_membership(self, user_id: str, tenant_id: str) -> Membership:
        # Non-members learn nothing about the tenant, not even that it exists.
        membership = await self._tenants.get_membership(tenant_id, user_id)
        if membership is None:
            raise NotFound(TENANT_NOT_FOUND_MESSAGE, code="TENANT_NOT_FOUND")
        return membership

    async def member_subject(self, user_id: str, tenant_id: str) -> PolicySubject:
        membership = await self.require_membership(user_id, tenant_id)
        return subject_from_membership(membership)

    async def authorize_tenant_action(
        self,
        user_id: str,
        tenant_id: str,
        action: str,
        resource: ResourceContext | None = None,
    ) -> PolicySubject:
        # Tenant-level actions (create/list) have no target to resolve first.
        subject = await self.member_subject(user_id, tenant_id)
        assert_authorized(action, subject, resource)
        return subject

    @staticmethod
    async def load_scoped(
        loader: Callable[[], Awaitable[T | None]],
        *,
        not_found_code: str,
        not_found_message: str,
    ) -> T:
        # The loader must already filter by tenant; a miss is always NotFound.
        value = await loader()
        if value is None:
            raise NotFound(not_found_message, code=not_found_code)
        return value

    async def resolve_then_authorize(
        self,
        subject: PolicySubject,
        loader: Callable[[], Awaitable[T | None]],
        actions: tuple[str, ...] | list[str],
        *,
        not_found_code: str,
        not_found_message: str,
        resource: ResourceContext | None = None,
    ) -> T:
        # Existence is settled before any permission check can run.
        value = await self.load_scoped(
            loader, not_found_code=not_found_code, not_found_message=not_found_message
        )
        for action in actions:
            assert_authorized(action, subject, resource)
        return value


def slugify_tenant_name(name: str) -> str:
    # Random suffix keeps slugs unique without a lookup round-trip.
    normalized = _SLUG_INVALID_CHARS.sub("-", name.lower()).strip("-")[:48]
    base = normalized or "tenant"
    return f"{base}-{secrets.token_hex(3)}"


def hash_invite_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CreatedInvite:
    # The raw token leaves the service once; storage only keeps its hash.
    invite: TenantInvite
    token: str


class TenantService:
    def __init__(
        self,
        tenants: TenantRepository,
        auth: AuthRepository,
        *,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        settings = settings or get_settings()
        self._tenants = tenants
        self._auth = auth
        self._guard = TenantIsolationGuard(tenants)
        self._invite_ttl = timedelta(hours=settings.invite_token_ttl_hours)
        self._now = time_provider

    async def create_tenant(self, *, owner_user_id: str, name: str) -> TenantMembership:
        cleaned = name.strip()
        if len(cleaned) < 3:
            raise ValidationError(
                "Tenant name must be at least 3 characters long.", code="TENANT_NAME_INVALID"
            )
        return await self._tenants.create_tenant_with_owner(
            name=cleaned,
            slug=slugify_tenant_name(cleaned),
            owner_user_id=owner_user_id,
            now=self._now(),
        )

    async def list_user_tenants(self, *, user_id: str) -> list[TenantMembership]:
        return await self._tenants.list_memberships_for_user(user_id)

    async def switch_active_tenant(self, *, user_id: str, tenant_id: str) -> Membership:
        # Non-members get NotFound, never Forbidden.
        membership = await self._guard.require_membership(user_id, tenant_id)
        assert_authorized("tenant.read", subject_from_membership(membership))
        return membership

    async def create_invite(
        self, *, invited_by_user_id: str, tenant_id: str, email: str, role: str
    ) -> CreatedInvite:
        await self._guard.authorize_tenant_action(invited_by_user_id, tenant_id, "members.invite")
        if role not in ORG_ROLES:
            raise ValidationError(f"Unsupported role: {role}", code="VALIDATION_ERROR")
        now = self._now()
        token = secrets.token_urlsafe(32)
        invite = await self._tenants.create_invite(
            tenant_id=tenant_id,
            email=email.strip().lower(),
            role=role,
            invited_by_user_id=invited_by_user_id,
            token_hash=hash_invite_token(token),
            expires_at=now + self._invite_ttl,
            now=now,
        )
        return CreatedInvite(invite=invite, token=token)

    async def accept_invite(self, *, user_id: str, token: str) -> TenantMembership:
        user = await self._auth.find_user_by_id(user_id)
        if user is None:
            raise AuthenticationRequired("Authentication is required.")
        accepted = await self._tenants.accept_invite(
            token_hash=hash_invite_token(token),
            user_id=user_id,
            user_email=user.email,
            now=self._now(),
        )
        if accepted is None:
            raise InviteInvalid("Invite token is invalid, expired, or already accepted.")
        return TenantMembership(tenant=accepted.tenant, membership=accepted.membership)
