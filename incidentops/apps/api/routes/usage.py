from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from incidentops.apps.api.csrf import enforce_csrf
from incidentops.apps.api.deps import get_active_tenant_id, get_runtime, require_auth_context
from incidentops.apps.api.response import success_response
from incidentops.runtime import Runtime
from incidentops.services.auth.context import AuthContext


router = APIRouter(prefix="/usage", tags=["usage"], dependencies=[Depends(enforce_csrf)])


class UsageOut(BaseModel):
    tenant_id: str
    metric: str
    window_hours: int
    used: int
    limit: int
    remaining: int


@router.get("")
async def get_usage(
    request: Request,
    context: AuthContext = Depends(require_auth_context),
    tenant_id: str = Depends(get_active_tenant_id),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    summary = await runtime.usage.get_usage_summary(user_id=context.user_id, tenant_id=tenant_id)
    usage = UsageOut(
        tenant_id=summary.tenant_id,
        metric=summary.metric,
        window_hours=summary.window_hours,
        used=summary.used,
        limit=summary.limit,
        remaining=summary.remaining,
    )
    return success_response(request=request, data={"usage": usage})
