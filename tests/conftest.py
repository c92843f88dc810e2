"""Shared pytest fixtures for pipeline, listener and API tests."""

import os

# Settings are cached on first import, so the test environment goes in first.
os.environ.setdefault("DATABASE_BACKEND", "memory")
os.environ.setdefault("ACCESS_CONTROL_KEYS", '{"christer": "private key", "espen": "foobar"}')

import hashlib
import hmac
from collections.abc import AsyncGenerator, Callable
from urllib.parse import urlsplit

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mediavault.access_control import ArrayAccessControl
from mediavault.adapters import InMemoryDatabaseAdapter
from mediavault.config import Settings
from mediavault.dependencies import get_database
from mediavault.events import Event
from mediavault.http import Request, Response
from mediavault.main import app


def sign(url: str, private_key: str) -> str:
    return hmac.new(private_key.encode(), url.encode(), hashlib.sha256).hexdigest()


def make_request(
    url: str,
    method: str = "GET",
    route: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    body: bytes = b"",
) -> Request:
    parts = urlsplit(url)
    return Request(
        method=method,
        scheme=parts.scheme,
        host=parts.netloc,
        raw_path=parts.path,
        query_string=parts.query,
        headers=headers or {},
        route=route or {},
        body=body,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(DATABASE_BACKEND="memory")


@pytest.fixture
def database() -> InMemoryDatabaseAdapter:
    return InMemoryDatabaseAdapter()


@pytest.fixture
def access_control() -> ArrayAccessControl:
    return ArrayAccessControl({"some-key": "private key", "christer": "private key"})


@pytest.fixture
def make_event(
    settings: Settings, access_control: ArrayAccessControl, database: InMemoryDatabaseAdapter
) -> Callable[..., Event]:
    def factory(
        request: Request,
        name: str = "user.get.pre",
        config: Settings | None = None,
        response: Response | None = None,
    ) -> Event:
        return Event(
            name=name,
            request=request,
            response=response or Response(),
            config=config or settings,
            access_control=access_control,
            database=database,
        )

    return factory


@pytest_asyncio.fixture(scope="function")
async def client(database: InMemoryDatabaseAdapter) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_database() -> InMemoryDatabaseAdapter:
        return database

    app.dependency_overrides[get_database] = override_get_database

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://imbo") as ac:
        yield ac

    app.dependency_overrides.clear()
