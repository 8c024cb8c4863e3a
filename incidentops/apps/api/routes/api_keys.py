from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from incidentops.apps.api.csrf import enforce_csrf
from incidentops.apps.api.deps import get_audit_context, get_runtime, require_session_context
from incidentops.apps.api.response import success_response
from incidentops.domain.entities import ApiKeyRecord, ApiKeyScope, ServiceAccount
from incidentops.runtime import Runtime
from incidentops.services.audit import AuditEvent, RequestContext
from incidentops.services.auth.context import AuthContext


router = APIRouter(
    prefix="/tenants/{tenant_id}",
    tags=["api-keys"],
    dependencies=[Depends(enforce_csrf)],
)


class CreateServiceAccountRequest(BaseModel):
    name: str = Field(min_length=3, max_length=120)
    owner_user_id: UUID | None = None


class CreateApiKeyRequest(BaseModel):
    service_account_id: UUID
    name: str = Field(min_length=3, max_length=120)
    scopes: list[ApiKeyScope] = Field(min_length=1)


class ServiceAccountOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    owner_user_id: str
    created_by_user_id: str
    revoked_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ApiKeyOut(BaseModel):
    # Never includes the hash; the raw secret is only returned on creation.
    id: str
    tenant_id: str
    service_account_id: str
    name: str
    key_prefix: str
    scopes: list[str]
    created_by_user_id: str
    last_used_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime


def _service_account_out(account: ServiceAccount) -> ServiceAccountOut:
    return ServiceAccountOut(
        id=account.id,
        tenant_id=account.tenant_id,
        name=account.name,
        owner_user_id=account.owner_user_id,
        created_by_user_id=account.created_by_user_id,
        revoked_at=account.revoked_at,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def _api_key_out(record: ApiKeyRecord) -> ApiKeyOut:
    return ApiKeyOut(
        id=record.id,
        tenant_id=record.tenant_id,
        service_account_id=record.service_account_id,
        name=record.name,
        key_prefix=record.key_prefix,
        scopes=list(record.scopes),
        created_by_user_id=record.created_by_user_id,
        last_used_at=record.last_used_at,
        revoked_at=record.revoked_at,
        created_at=record.created_at,
    )


@router.get("/service-accounts")
async def list_service_accounts(
    request: Request,
    tenant_id: UUID,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    accounts = await runtime.api_keys.list_service_accounts(
        user_id=context.user_id, tenant_id=str(tenant_id)
    )
    data = {"service_accounts": [_service_account_out(account) for account in accounts]}
    return success_response(request=request, data=data)


@router.post("/service-accounts", status_code=201)
async def create_service_account(
    request: Request,
    tenant_id: UUID,
    payload: CreateServiceAccountRequest,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    account = await runtime.api_keys.create_service_account(
        user_id=context.user_id,
        tenant_id=str(tenant_id),
        name=payload.name,
        owner_user_id=str(payload.owner_user_id) if payload.owner_user_id else None,
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="service_account.created",
            tenant_id=account.tenant_id,
            actor_user_id=context.user_id,
            target_type="service_account",
            target_id=account.id,
            metadata={"owner_user_id": account.owner_user_id},
            context=audit_context,
        )
    )
    return success_response(
        request=request, data={"service_account": _service_account_out(account)}
    )


@router.get("/api-keys")
async def list_api_keys(
    request: Request,
    tenant_id: UUID,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    records = await runtime.api_keys.list_api_keys(user_id=context.user_id, tenant_id=str(tenant_id))
    return success_response(
        request=request, data={"api_keys": [_api_key_out(record) for record in records]}
    )


@router.post("/api-keys", status_code=201)
async def create_api_key(
    request: Request,
    tenant_id: UUID,
    payload: CreateApiKeyRequest,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    created = await runtime.api_keys.create_api_key(
        user_id=context.user_id,
        tenant_id=str(tenant_id),
        service_account_id=str(payload.service_account_id),
        name=payload.name,
        scopes=payload.scopes,
    )
    record = created.record
    await runtime.audit.record_safely(
        AuditEvent(
            action="api_key.created",
            tenant_id=record.tenant_id,
            actor_user_id=context.user_id,
            target_type="api_key",
            target_id=record.id,
            metadata={"service_account_id": record.service_account_id, "scopes": list(record.scopes)},
            context=audit_context,
        )
    )
    # The only response that ever carries the raw key.
    data = {"api_key": _api_key_out(record), "secret": created.secret}
    return success_response(request=request, data=data)


@router.post("/api-keys/{api_key_id}/revoke")
async def revoke_api_key(
    request: Request,
    tenant_id: UUID,
    api_key_id: UUID,
    context: AuthContext = Depends(require_session_context),
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    record = await runtime.api_keys.revoke_api_key(
        user_id=context.user_id, tenant_id=str(tenant_id), api_key_id=str(api_key_id)
    )
    await runtime.audit.record_safely(
        AuditEvent(
            action="api_key.revoked",
            tenant_id=record.tenant_id,
            actor_user_id=context.user_id,
            target_type="api_key",
            target_id=record.id,
            context=audit_context,
        )
    )
    return success_response(request=request, data={"api_key": _api_key_out(record)})
