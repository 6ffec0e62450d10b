"""Shared fixtures for the conduit test suite."""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import pytest

from conduit.providers.oauth import OAuthClientSettings, ProviderSettings

if TYPE_CHECKING:
    from testcontainers.postgres import PostgresContainer

    from conduit.db import Database

docker_available = shutil.which("docker") is not None

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def provider_settings() -> ProviderSettings:
    return ProviderSettings(
        google=OAuthClientSettings(client_id="google-cid", client_secret="google-secret"),
        microsoft=OAuthClientSettings(client_id="ms-cid", client_secret="ms-secret"),
        http_timeout_seconds=5.0,
    )


@pytest.fixture
def mock_http() -> Callable[[Handler], httpx.AsyncClient]:
    """Build ``httpx.AsyncClient`` instances backed by ``httpx.MockTransport``."""

    def _make(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Shared Postgres testcontainer for every DB-backed test in the session."""
    if not docker_available:
        pytest.skip("Docker not available")
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
def provisioned_database(
    postgres_container: PostgresContainer,
) -> Callable[[], AbstractAsyncContextManager[Database]]:
    """Create a fresh database with a connected pool for a single test.

    Usage::

        async with provisioned_database() as db:
            ...
    """
    from conduit.db import Database

    @asynccontextmanager
    async def _provision() -> AsyncIterator[Database]:
        db = Database(
            db_name=f"test_{uuid.uuid4().hex[:12]}",
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            max_pool_size=3,
        )
        await db.provision()
        await db.connect()
        try:
            yield db
        finally:
            await db.close()

    return _provision
