from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field

from incidentops.apps.api.csrf import enforce_csrf
from incidentops.apps.api.deps import (
    SESSION_TENANT_KEY,
    get_audit_context,
    get_runtime,
    require_session_context,
)
from incidentops.apps.api.response import success_response
from incidentops.domain.entities import Membership, OrgRole, Tenant, TenantMembership
from incidentops.runtime import Runtime
from incidentops.services.audit import AuditEvent, RequestContext, email_domain
from incidentops.services.auth.context import AuthContext


router = APIRouter(prefix="/tenants", tags=["tenants"], dependencies=[Depends(enforce_csrf)])


class CreateTenantRequest(BaseModel):
    name: str = Field(min_length=3, max_length=80)


class InviteRequest(BaseModel):
    email: EmailStr
    role: OrgRole


class AcceptInviteRequest(BaseModel):
    token: str = Field(min_length=16)


class TenantOut(BaseModel):
    id: str
    name: str
    slug: str
    created_by_user_id: str
    created_at: datetime
    updated_at: datetime


class MembershipOut(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    role: str
    created_at: datetime
    updated_at: datetime


def _tenant_out(tenant: Tenant) -> TenantOut:
    return TenantOut(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        created_by_user_id=tenant.created_by_user_id,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )


def _membership_out(membership: Membership) -> MembershipOut:
    return MembershipOut(
        id=membership.id,
        tenant_id=membership.tenant_id,
        user_id=membership.user_id,
        role=membership.role,
        created_at=membership.created_at,
        updated_at=membership.updated_at,
    )


def _record_out(request: Request, record: TenantMembership) -> dict:
    return {
        "tenant": _tenant_out(record.tenant),
        "membership": _membership_out(record.membership),
        "active_tenant_id": request.session.get(SESSION_TENANT_KEY),
    }


@router.get("")
async def list_tenants(
    request: Request,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    records = await runtime.tenants.list_user_tenants(user_id=context.user_id)
    data = {
        "active_tenant_id": request.session.get(SESSION_TENANT_KEY),
        "tenants": [
            {
                "tenant": _tenant_out(record.tenant),
                "membership": {"id": record.membership.id, "role": record.membership.role},
            }
            for record in records
        ],
    }
    return success_response(request=request, data=data)


@router.post("", status_code=201)
async def create_tenant(
    request: Request,
    payload: CreateTenantRequest,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    record = await runtime.tenants.create_tenant(owner_user_id=context.user_id, name=payload.name)
    request.session[SESSION_TENANT_KEY] = record.tenant.id
    await runtime.audit.record_safely(
        AuditEvent(
            action="tenant.created",
            tenant_id=record.tenant.id,
            actor_user_id=context.user_id,
            target_type="tenant",
            target_id=record.tenant.id,
            metadata={"membership_role": record.membership.role},
            context=audit_context,
        )
    )
    return success_response(request=request, data=_record_out(request, record))


@router.post("/invites/accept")
async def accept_invite(
    request: Request,
    payload: AcceptInviteRequest,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    record = await runtime.tenants.accept_invite(user_id=context.user_id, token=payload.token)
    request.session[SESSION_TENANT_KEY] = record.tenant.id
    await runtime.audit.record_safely(
        AuditEvent(
            action="tenant.invite.accepted",
            tenant_id=record.tenant.id,
            actor_user_id=context.user_id,
            target_type="membership",
            target_id=record.membership.id,
            metadata={"role": record.membership.role},
            context=audit_context,
        )
    )
    return success_response(request=request, data=_record_out(request, record))


@router.post("/{tenant_id}/switch")
async def switch_tenant(
    request: Request,
    tenant_id: UUID,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    membership = await runtime.tenants.switch_active_tenant(
        user_id=context.user_id, tenant_id=str(tenant_id)
    )
    request.session[SESSION_TENANT_KEY] = membership.tenant_id
    await runtime.audit.record_safely(
        AuditEvent(
            action="tenant.switched",
            tenant_id=membership.tenant_id,
            actor_user_id=context.user_id,
            target_type="tenant",
            target_id=membership.tenant_id,
            metadata={"role": membership.role},
            context=audit_context,
        )
    )
    data = {
        "active_tenant_id": membership.tenant_id,
        "membership": _membership_out(membership),
    }
    return success_response(request=request, data=data)


@router.post("/{tenant_id}/invites", status_code=201)
async def create_invite(
    request: Request,
    tenant_id: UUID,
    payload: InviteRequest,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    created = await runtime.tenants.create_invite(
        invited_by_user_id=context.user_id,
        tenant_id=str(tenant_id),
        email=payload.email,
        role=payload.role,
    )
    invite = created.invite
    await runtime.audit.record_safely(
        AuditEvent(
            action="tenant.invite.created",
            tenant_id=invite.tenant_id,
            actor_user_id=context.user_id,
            target_type="tenant_invite",
            target_id=invite.id,
            metadata={"role": invite.role, "email_domain": email_domain(payload.email)},
            context=audit_context,
        )
    )
    data: dict = {
        "invite": {
            "id": invite.id,
            "tenant_id": invite.tenant_id,
            "email": invite.email,
            "role": invite.role,
            "expires_at": invite.expires_at,
            "created_at": invite.created_at,
        }
    }
    if runtime.settings.invites_expose_token:
        data["invite_token"] = created.token
    return success_response(request=request, data=data)
