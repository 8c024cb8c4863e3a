from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, EmailStr, Field

from incidentops.apps.api.csrf import enforce_csrf, issue_csrf_token
from incidentops.apps.api.deps import (
    SESSION_TENANT_KEY,
    SESSION_USER_KEY,
    get_audit_context,
    get_auth_context,
    get_runtime,
)
from incidentops.apps.api.response import success_response
from incidentops.runtime import Runtime
from incidentops.services.audit import AuditEvent, RequestContext, email_domain
from incidentops.services.auth.context import AuthContext
from incidentops.services.auth.service import AuthenticatedUser


router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(enforce_csrf)])


class Credentials(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=16)
    new_password: str = Field(min_length=1, max_length=1024)


class UserOut(BaseModel):
    id: str
    email: str
    password_updated_at: datetime
    created_at: datetime


def _user_out(user: AuthenticatedUser) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        password_updated_at=user.password_updated_at,
        created_at=user.created_at,
    )


def _start_session(request: Request, user_id: str) -> str:
    # Drop any pre-login state (fixation defence) and mint a fresh CSRF token.
    request.session.clear()
    request.session[SESSION_USER_KEY] = user_id
    return issue_csrf_token(request)


def _session_payload(user: AuthenticatedUser, csrf_token: str, auth_kind: str = "session") -> dict:
    return {
        "authenticated": True,
        "auth_kind": auth_kind,
        "user": _user_out(user),
        "csrf_token": csrf_token,
    }


@router.get("/me")
async def me(
    request: Request,
    context: AuthContext | None = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    csrf_token = issue_csrf_token(request)
    if context is None:
        return success_response(
            request=request, data={"authenticated": False, "csrf_token": csrf_token}
        )
    user = await runtime.auth.get_current_user(context.user_id)
    if user is None:
        # The session outlived its user; forget it.
        request.session.pop(SESSION_USER_KEY, None)
        return success_response(
            request=request, data={"authenticated": False, "csrf_token": csrf_token}
        )
    return success_response(
        request=request, data=_session_payload(user, csrf_token, context.auth_kind)
    )


@router.post("/signup", status_code=201)
async def signup(
    request: Request,
    payload: Credentials,
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    user = await runtime.auth.create_user(payload.email, payload.password)
    csrf_token = _start_session(request, user.id)
    await runtime.audit.record_safely(
        AuditEvent(
            action="auth.signup",
            actor_user_id=user.id,
            target_type="user",
            target_id=user.id,
            metadata={"auth_method": "password"},
            context=audit_context,
        )
    )
    return success_response(request=request, data=_session_payload(user, csrf_token))


@router.post("/login")
async def login(
    request: Request,
    payload: Credentials,
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    user = await runtime.auth.login(payload.email, payload.password)
    csrf_token = _start_session(request, user.id)
    await runtime.audit.record_safely(
        AuditEvent(
            action="auth.login",
            actor_user_id=user.id,
            target_type="user",
            target_id=user.id,
            metadata={"auth_method": "password"},
            context=audit_context,
        )
    )
    return success_response(request=request, data=_session_payload(user, csrf_token))


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> Response:
    actor_user_id = request.session.get(SESSION_USER_KEY)
    tenant_id = request.session.get(SESSION_TENANT_KEY)
    request.session.clear()
    await runtime.audit.record_safely(
        AuditEvent(
            action="auth.logout",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            target_type="user" if actor_user_id else None,
            target_id=actor_user_id,
            context=audit_context,
        )
    )
    return Response(status_code=204)


@router.post("/password/forgot", status_code=202)
async def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> dict:
    reset_token = await runtime.auth.request_password_reset(payload.email)
    await runtime.audit.record_safely(
        AuditEvent(
            action="auth.password_reset.requested",
            target_type="user",
            metadata={"email_domain": email_domain(payload.email)},
            context=audit_context,
        )
    )
    # Same body whether or not the account exists.
    data: dict = {
        "code": "AUTH_PASSWORD_RESET_REQUESTED",
        "message": "If the account exists, a password reset link will be sent.",
    }
    if runtime.settings.auth_expose_reset_token and reset_token is not None:
        data["reset_token"] = reset_token
    return success_response(request=request, data=data)


@router.post("/password/reset", status_code=204)
async def reset_password(
    payload: ResetPasswordRequest,
    runtime: Runtime = Depends(get_runtime),
    audit_context: RequestContext = Depends(get_audit_context),
) -> Response:
    user = await runtime.auth.reset_password(payload.token, payload.new_password)
    await runtime.audit.record_safely(
        AuditEvent(
            action="auth.password_reset.completed",
            actor_user_id=user.id,
            target_type="user",
            target_id=user.id,
            context=audit_context,
        )
    )
    return Response(status_code=204)
