from __future__ import annotations

from typing import Any


class IncidentOpsError(Exception):
    """Base error carrying a stable code and an HTTP status class."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class AuthenticationRequired(IncidentOpsError):
    """No identity is attached to the request."""

    status_code = 401
    code = "AUTH_REQUIRED"


class InvalidCredentials(IncidentOpsError):
    """Email/password pair did not match."""

    status_code = 401
    code = "AUTH_INVALID_CREDENTIALS"


class AccountLocked(IncidentOpsError):
    """Account temporarily locked after repeated failures; details carry retry_at."""

    status_code = 423
    code = "AUTH_ACCOUNT_LOCKED"


class PermissionDenied(IncidentOpsError):
    """Identity and resource are known but the action is not allowed."""

    status_code = 403
    code = "PERMISSION_DENIED"


class NotFound(IncidentOpsError):
    """Resource is absent or belongs to another tenant; the two are never distinguished."""

    status_code = 404
    code = "NOT_FOUND"


class TenantContextError(IncidentOpsError):
    """Active tenant is missing or malformed for a tenant-scoped operation."""

    status_code = 400
    code = "TENANT_CONTEXT_REQUIRED"


class ValidationError(IncidentOpsError):
    """Malformed or unacceptable input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class Conflict(IncidentOpsError):
    """Request collides with existing state."""

    status_code = 409
    code = "CONFLICT"


class StatusTransitionInvalid(IncidentOpsError):
    """Incident status edge is not part of the lifecycle."""

    status_code = 400
    code = "INCIDENT_STATUS_TRANSITION_INVALID"


class QuotaExceeded(IncidentOpsError):
    """Tenant write budget is exhausted for the current window."""

    status_code = 429
    code = "QUOTA_EXCEEDED"


class ApiKeyInvalid(IncidentOpsError):
    """API key is malformed, unknown, or revoked."""

    status_code = 401
    code = "AUTH_INVALID_API_KEY"


class ApiKeyScopeDenied(IncidentOpsError):
    """Known API key lacks the scope class required by the HTTP method."""

    status_code = 403
    code = "API_KEY_SCOPE_DENIED"


class PaginationError(IncidentOpsError):
    """Cursor or page limit could not be accepted."""

    status_code = 400
    code = "PAGINATION_CURSOR_INVALID"


class InviteInvalid(IncidentOpsError):
    """Invite token is unknown, used, expired, or addressed to another email."""

    status_code = 400
    code = "INVITE_INVALID"
