from __future__ import annotations

from dataclasses import dataclass


SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class AuthContext:
    # Immutable per-request principal; built once and passed explicitly downstream.
    auth_kind: str
    user_id: str
    tenant_id: str | None = None
    api_key_id: str | None = None
    scopes: frozenset[str] | None = None

    @property
    def is_api_key(self) -> bool:
        return self.auth_kind == "api_key"

    def has_scope(self, scope: str) -> bool:
        # Session principals carry no scopes and are gated by role policy alone.
        if self.scopes is None:
            return True
        return scope in self.scopes


def session_context(user_id: str, tenant_id: str | None) -> AuthContext:
    return AuthContext(auth_kind="session", user_id=user_id, tenant_id=tenant_id)


def api_key_context(
    *, user_id: str, tenant_id: str, api_key_id: str, scopes: tuple[str, ...] | frozenset[str]
) -> AuthContext:
    return AuthContext(
        auth_kind="api_key",
        user_id=user_id,
        tenant_id=tenant_id,
        api_key_id=api_key_id,
        scopes=frozenset(scopes),
    )


def required_scope_for_method(method: str) -> str:
    # Safe methods map to the read scope; everything else mutates.
    return "read" if method.upper() in SAFE_METHODS else "write"


def is_safe_method(method: str) -> bool:
    return method.upper() in SAFE_METHODS
