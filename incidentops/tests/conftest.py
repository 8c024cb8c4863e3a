from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from incidentops.apps.api.main import create_app
from incidentops.core.config import Settings
from incidentops.runtime import Runtime, build_runtime
from incidentops.tests.utils.clock import Clock
from incidentops.tests.utils.passwords import fast_hasher


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        auth_expose_reset_token=True,
        invites_expose_token=True,
        cursor_secret="test-cursor-secret",
        session_secret="test-session-secret",
    )


@pytest.fixture
def runtime(settings: Settings, clock: Clock) -> Runtime:
    return build_runtime(settings, hasher=fast_hasher(), time_provider=clock.now)


@pytest.fixture
def app(runtime: Runtime):
    return create_app(runtime=runtime)


@pytest_asyncio.fixture
async def make_client(app) -> AsyncIterator[Callable[[], Awaitable[AsyncClient]]]:
    # Every client has its own cookie jar, so each one is an independent browser.
    clients: list[AsyncClient] = []

    async def _make() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def client(make_client) -> AsyncClient:
    return await make_client()
