from __future__ import annotations

import logging

from incidentops.core.errors import ApiKeyInvalid, ApiKeyScopeDenied, AuthenticationRequired
from incidentops.services.auth.api_keys import ApiKeyService
from incidentops.services.auth.context import (
    AuthContext,
    api_key_context,
    required_scope_for_method,
    session_context,
)


logger = logging.getLogger(__name__)


class PrincipalResolver:
    """Turn request credentials into an AuthContext.

    An API key header always wins over a session cookie. A present but unusable
    key never falls back to the session: the request fails outright.
    """

    def __init__(self, api_keys: ApiKeyService) -> None:
        self._api_keys = api_keys

    async def resolve(
        self,
        *,
        method: str,
        api_key: str | None,
        session_user_id: str | None,
        session_tenant_id: str | None,
    ) -> AuthContext | None:
        if api_key:
            return await self.resolve_api_key(method=method, api_key=api_key)
        if session_user_id:
            return session_context(session_user_id, session_tenant_id)
        return None

    async def resolve_api_key(self, *, method: str, api_key: str) -> AuthContext:
        principal = await self._api_keys.authenticate_api_key(api_key)
        if principal is None:
            # Unknown, revoked, and orphaned keys are indistinguishable to the caller.
            raise ApiKeyInvalid("API key is invalid or revoked.")
        context = api_key_context(
            user_id=principal.user_id,
            tenant_id=principal.tenant_id,
            api_key_id=principal.api_key_id,
            scopes=principal.scopes,
        )
        required = required_scope_for_method(method)
        if not context.has_scope(required):
            logger.info(
                "api_key_scope_denied api_key_id=%s method=%s required=%s",
                principal.api_key_id,
                method,
                required,
            )
            raise ApiKeyScopeDenied("API key does not include the required scope.")
        return context

    async def require(
        self,
        *,
        method: str,
        api_key: str | None,
        session_user_id: str | None,
        session_tenant_id: str | None,
    ) -> AuthContext:
        context = await self.resolve(
            method=method,
            api_key=api_key,
            session_user_id=session_user_id,
            session_tenant_id=session_tenant_id,
        )
        if context is None:
            raise AuthenticationRequired("Authentication is required.")
        return context
