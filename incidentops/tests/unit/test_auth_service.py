from __future__ import annotations

from datetime import timedelta

import pytest

from incidentops.core.config import Settings
from incidentops.core.errors import AccountLocked, Conflict, InvalidCredentials, ValidationError
from incidentops.persistence.repos.factory import build_memory_repositories
from incidentops.services.auth.passwords import PasswordHasher
from incidentops.services.auth.service import AuthService
from incidentops.tests.utils.clock import Clock
from incidentops.tests.utils.passwords import fast_hasher


PASSWORD = "correct-horse-battery"


def _service(clock: Clock, **overrides) -> AuthService:
    return AuthService(
        build_memory_repositories().auth,
        settings=Settings(**overrides),
        hasher=fast_hasher(),
        time_provider=clock.now,
    )


def test_password_hasher_round_trip_and_bad_hashes() -> None:
    hasher = fast_hasher()
    password_hash = hasher.hash(PASSWORD)
    assert password_hash.startswith("$argon2id$")
    assert hasher.verify(password_hash, PASSWORD)
    assert not hasher.verify(password_hash, "wrong-password")
    assert not PasswordHasher().verify("not-a-hash", PASSWORD)


@pytest.mark.asyncio
async def test_signup_normalizes_email_and_rejects_duplicates() -> None:
    service = _service(Clock())
    user = await service.create_user("  Alice@Acme.IO ", PASSWORD)
    assert user.email == "alice@acme.io"
    with pytest.raises(Conflict) as exc_info:
        await service.create_user("alice@acme.io", PASSWORD)
    assert exc_info.value.code == "EMAIL_ALREADY_REGISTERED"


@pytest.mark.asyncio
async def test_weak_passwords_are_rejected() -> None:
    service = _service(Clock())
    with pytest.raises(ValidationError) as exc_info:
        await service.create_user("alice@acme.io", "short")
    assert exc_info.value.code == "AUTH_PASSWORD_WEAK"


@pytest.mark.asyncio
async def test_login_failures_lock_the_account() -> None:
    clock = Clock()
    service = _service(clock, auth_lockout_attempts=3, auth_lockout_seconds=60)
    await service.create_user("alice@acme.io", PASSWORD)

    for _ in range(2):
        with pytest.raises(InvalidCredentials):
            await service.login("alice@acme.io", "wrong-password")
    with pytest.raises(AccountLocked) as locked:
        await service.login("alice@acme.io", "wrong-password")
    assert locked.value.status_code == 423
    assert "retry_at" in locked.value.details

    # Even the right password is refused while locked.
    with pytest.raises(AccountLocked):
        await service.login("alice@acme.io", PASSWORD)

    clock.advance(timedelta(seconds=61))
    user = await service.login("alice@acme.io", PASSWORD)
    assert user.email == "alice@acme.io"

    # Success clears the failure count.
    for _ in range(2):
        with pytest.raises(InvalidCredentials):
            await service.login("alice@acme.io", "wrong-password")
    assert await service.login("alice@acme.io", PASSWORD)


@pytest.mark.asyncio
async def test_unknown_email_is_indistinguishable_from_bad_password() -> None:
    service = _service(Clock())
    await service.create_user("alice@acme.io", PASSWORD)
    with pytest.raises(InvalidCredentials) as unknown:
        await service.login("nobody@acme.io", PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        await service.login("alice@acme.io", "wrong-password")
    assert unknown.value.message == wrong.value.message


@pytest.mark.asyncio
async def test_password_reset_is_single_use() -> None:
    clock = Clock()
    service = _service(clock)
    await service.create_user("alice@acme.io", PASSWORD)
    assert await service.request_password_reset("nobody@acme.io") is None

    token = await service.request_password_reset("alice@acme.io")
    assert token
    await service.reset_password(token, "a-brand-new-passphrase")
    assert await service.login("alice@acme.io", "a-brand-new-passphrase")
    with pytest.raises(InvalidCredentials):
        await service.login("alice@acme.io", PASSWORD)

    with pytest.raises(ValidationError) as reused:
        await service.reset_password(token, "yet-another-passphrase")
    assert reused.value.code == "AUTH_RESET_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_password_reset_tokens_expire() -> None:
    clock = Clock()
    service = _service(clock, auth_reset_token_ttl_minutes=30)
    await service.create_user("alice@acme.io", PASSWORD)
    token = await service.request_password_reset("alice@acme.io")
    clock.advance(timedelta(minutes=31))
    with pytest.raises(ValidationError):
        await service.reset_password(token, "a-brand-new-passphrase")
