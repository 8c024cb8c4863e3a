from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import uuid4

from incidentops.core.errors import Conflict
from incidentops.domain.entities import User


@dataclass
class _ResetToken:
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    used_at: datetime | None
    created_at: datetime


class InMemoryAuthRepository:
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._user_ids_by_email: dict[str, str] = {}
        self._reset_tokens: dict[str, _ResetToken] = {}

    async def create_user(self, *, email: str, password_hash: str, now: datetime) -> User:
        normalized = email.strip().lower()
        if normalized in self._user_ids_by_email:
            raise Conflict("Email is already registered.", code="EMAIL_ALREADY_REGISTERED")
        user = User(
            id=str(uuid4()),
            email=normalized,
            password_hash=password_hash,
            password_updated_at=now,
            failed_login_attempts=0,
            lockout_until=None,
            created_at=now,
            updated_at=now,
        )
        self._users[user.id] = user
        self._user_ids_by_email[normalized] = user.id
        return user

    async def find_user_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def find_user_by_email(self, email: str) -> User | None:
        user_id = self._user_ids_by_email.get(email.strip().lower())
        return self._users.get(user_id) if user_id else None

    async def update_user_password(
        self, user_id: str, password_hash: str, password_updated_at: datetime
    ) -> None:
        user = self._users.get(user_id)
        if user is None:
            return
        self._users[user_id] = replace(
            user,
            password_hash=password_hash,
            password_updated_at=password_updated_at,
            updated_at=password_updated_at,
        )

    async def record_failed_login(
        self, user_id: str, failed_login_attempts: int, lockout_until: datetime | None
    ) -> None:
        user = self._users.get(user_id)
        if user is None:
            return
        self._users[user_id] = replace(
            user, failed_login_attempts=failed_login_attempts, lockout_until=lockout_until
        )

    async def clear_failed_login_state(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is None:
            return
        self._users[user_id] = replace(user, failed_login_attempts=0, lockout_until=None)

    async def create_password_reset_token(
        self, *, user_id: str, token_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        token = _ResetToken(
            id=str(uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            used_at=None,
            created_at=now,
        )
        self._reset_tokens[token_hash] = token

    async def consume_password_reset_token(self, token_hash: str, now: datetime) -> User | None:
        # Tokens are single-use: mark used before returning the owner.
        token = self._reset_tokens.get(token_hash)
        if token is None or token.used_at is not None or token.expires_at <= now:
            return None
        user = self._users.get(token.user_id)
        if user is None:
            return None
        token.used_at = now
        return user

    async def purge_expired_password_reset_tokens(self, now: datetime) -> None:
        expired = [
            token_hash
            for token_hash, token in self._reset_tokens.items()
            if token.expires_at < now
        ]
        for token_hash in expired:
            del self._reset_tokens[token_hash]
