from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentops.core.errors import Conflict
from incidentops.domain import entities
from incidentops.domain.models import PasswordResetToken, User
from incidentops.persistence.repos.sql.mappers import user_from_row


class SqlAuthRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_user(self, *, email: str, password_hash: str, now: datetime) -> entities.User:
        row = User(
            id=str(uuid4()),
            email=email.strip().lower(),
            password_hash=password_hash,
            password_updated_at=now,
            failed_login_attempts=0,
            lockout_until=None,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise Conflict("Email is already registered.", code="EMAIL_ALREADY_REGISTERED") from exc
            return user_from_row(row)

    async def find_user_by_id(self, user_id: str) -> entities.User | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return user_from_row(row) if row else None

    async def find_user_by_email(self, email: str) -> entities.User | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.email == email.strip().lower()))
            row = result.scalar_one_or_none()
            return user_from_row(row) if row else None

    async def update_user_password(
        self, user_id: str, password_hash: str, password_updated_at: datetime
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(
                    password_hash=password_hash,
                    password_updated_at=password_updated_at,
                    updated_at=password_updated_at,
                )
            )
            await session.commit()

    async def record_failed_login(
        self, user_id: str, failed_login_attempts: int, lockout_until: datetime | None
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_attempts=failed_login_attempts, lockout_until=lockout_until)
            )
            await session.commit()

    async def clear_failed_login_state(self, user_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_attempts=0, lockout_until=None)
            )
            await session.commit()

    async def create_password_reset_token(
        self, *, user_id: str, token_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                PasswordResetToken(
                    id=str(uuid4()),
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    used_at=None,
                    created_at=now,
                )
            )
            await session.commit()

    async def consume_password_reset_token(self, token_hash: str, now: datetime) -> entities.User | None:
        # Mark-used and owner lookup commit together so a token works exactly once.
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PasswordResetToken)
                    .where(
                        PasswordResetToken.token_hash == token_hash,
                        PasswordResetToken.used_at.is_(None),
                        PasswordResetToken.expires_at > now,
                    )
                    .values(used_at=now)
                    .returning(PasswordResetToken.user_id)
                )
                user_id = result.scalar_one_or_none()
                if user_id is None:
                    return None
                row = await session.get(User, user_id)
                return user_from_row(row) if row else None

    async def purge_expired_password_reset_tokens(self, now: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(PasswordResetToken).where(PasswordResetToken.expires_at < now))
            await session.commit()
