from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from incidentops.core.config import Settings, get_settings
from incidentops.core.errors import AccountLocked, InvalidCredentials, ValidationError
from incidentops.domain.entities import User
from incidentops.persistence.repos.base import AuthRepository
from incidentops.services.auth.passwords import PasswordHasher


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hash_reset_token(token: str) -> str:
    # Reset tokens are stored the same way as API keys: sha256 hex only.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class AuthenticatedUser:
    # Public projection of a user; never carries the password hash.
    id: str
    email: str
    password_updated_at: datetime
    created_at: datetime


def to_public_user(user: User) -> AuthenticatedUser:
    return AuthenticatedUser(
        id=user.id,
        email=user.email,
        password_updated_at=user.password_updated_at,
        created_at=user.created_at,
    )


class AuthService:
    def __init__(
        self,
        repository: AuthRepository,
        *,
        settings: Settings | None = None,
        hasher: PasswordHasher | None = None,
        time_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._hasher = hasher or PasswordHasher()
        self._now = time_provider

    def validate_password_strength(self, password: str) -> None:
        minimum = self._settings.auth_password_min_length
        if len(password) < minimum:
            raise ValidationError(
                f"Password must be at least {minimum} characters long.",
                code="AUTH_PASSWORD_WEAK",
            )

    async def create_user(self, email: str, password: str) -> AuthenticatedUser:
        self.validate_password_strength(password)
        password_hash = await self._hasher.hash_async(password)
        user = await self._repository.create_user(
            email=normalize_email(email), password_hash=password_hash, now=self._now()
        )
        return to_public_user(user)

    async def get_current_user(self, user_id: str) -> AuthenticatedUser | None:
        user = await self._repository.find_user_by_id(user_id)
        return to_public_user(user) if user is not None else None

    async def login(self, email: str, password: str) -> AuthenticatedUser:
        now = self._now()
        user = await self._repository.find_user_by_email(normalize_email(email))
        if user is None:
            raise InvalidCredentials("Invalid email or password.")

        if user.lockout_until is not None and user.lockout_until > now:
            raise AccountLocked(
                "Account is temporarily locked.",
                details={"retry_at": user.lockout_until.isoformat()},
            )

        if not await self._hasher.verify_async(user.password_hash, password):
            failed_attempts = user.failed_login_attempts + 1
            lockout_until: datetime | None = None
            if failed_attempts >= self._settings.auth_lockout_attempts:
                lockout_until = now + timedelta(seconds=self._settings.auth_lockout_seconds)
            await self._repository.record_failed_login(user.id, failed_attempts, lockout_until)
            if lockout_until is not None:
                logger.warning("auth_account_locked user_id=%s attempts=%s", user.id, failed_attempts)
                raise AccountLocked(
                    "Account is temporarily locked.",
                    details={"retry_at": lockout_until.isoformat()},
                )
            raise InvalidCredentials("Invalid email or password.")

        await self._repository.clear_failed_login_state(user.id)
        return to_public_user(user)

    async def request_password_reset(self, email: str) -> str | None:
        now = self._now()
        user = await self._repository.find_user_by_email(normalize_email(email))
        await self._repository.purge_expired_password_reset_tokens(now)
        # Unknown emails get the same outward response; the caller hides the difference.
        if user is None:
            return None

        token = secrets.token_urlsafe(32)
        expires_at = now + timedelta(minutes=self._settings.auth_reset_token_ttl_minutes)
        await self._repository.create_password_reset_token(
            user_id=user.id, token_hash=hash_reset_token(token), expires_at=expires_at, now=now
        )
        return token

    async def reset_password(self, token: str, new_password: str) -> AuthenticatedUser:
        self.validate_password_strength(new_password)
        now = self._now()
        user = await self._repository.consume_password_reset_token(hash_reset_token(token), now)
        if user is None:
            raise ValidationError(
                "Password reset token is invalid or expired.", code="AUTH_RESET_TOKEN_INVALID"
            )
        password_hash = await self._hasher.hash_async(new_password)
        await self._repository.update_user_password(user.id, password_hash, now)
        await self._repository.clear_failed_login_state(user.id)
        return to_public_user(user)
