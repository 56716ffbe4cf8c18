"""Test fixtures for the bookmark client."""
import asyncio
from collections.abc import AsyncGenerator, Callable, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx

from bookmark_client.api_client import BookmarksApi
from bookmark_client.config import ClientSettings
from bookmark_client.models import Bookmark
from bookmark_client.session import AuthClient, SessionStore

API_URL = "http://localhost:8000"
USER_ID = "0190f3c2-aaaa-7000-8000-000000000001"
OTHER_USER_ID = "0190f3c2-bbbb-7000-8000-000000000002"
TOKEN = "test-access-token"

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path: Path) -> ClientSettings:
    """Client settings isolated from the environment, with fast reconnects."""
    return ClientSettings(
        _env_file=None,
        api_url=API_URL,
        auth0_domain="test.auth0.com",
        auth0_client_id="test-client-id",
        auth0_audience="https://bookmarks-api",
        auth_redirect_url="http://localhost:3000/callback",
        session_file=tmp_path / "session.json",
        subscribe_timeout=0.5,
        reconnect_initial_delay=0.01,
        reconnect_max_delay=0.05,
    )


@pytest.fixture
def session_store(settings: ClientSettings) -> SessionStore:
    """A session store that already holds a token."""
    store = SessionStore(settings.session_file)
    store.save_token(TOKEN)
    return store


@pytest.fixture
def auth(settings: ClientSettings, session_store: SessionStore) -> AuthClient:
    return AuthClient(settings, session_store)


@pytest.fixture
def mock_api() -> Iterator[respx.MockRouter]:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=API_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
async def http() -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(base_url=API_URL) as client:
        yield client


@pytest.fixture
def api(http: httpx.AsyncClient, auth: AuthClient) -> BookmarksApi:
    return BookmarksApi(http, auth.get_access_token)


@pytest.fixture
def make_bookmark() -> Callable[..., Bookmark]:
    """
    Factory for bookmark records.

    `minutes` offsets created_at from a fixed base time, so a larger value is newer.
    """

    def _make(
        bookmark_id: str,
        minutes: int = 0,
        title: str | None = None,
        user_id: str = USER_ID,
        url: str | None = None,
    ) -> Bookmark:
        created = BASE_TIME + timedelta(minutes=minutes)
        return Bookmark(
            id=bookmark_id,
            title=title if title is not None else f"Bookmark {bookmark_id}",
            url=url if url is not None else f"https://example.com/{bookmark_id}",
            user_id=user_id,
            created_at=created,
            updated_at=created,
        )

    return _make


class FakeApi:
    """
    Stand-in for BookmarksApi whose list responses are released by the test.

    Each call to list_bookmarks waits on its own future, so tests control exactly
    when (and in which order) concurrent loads complete.
    """

    def __init__(self) -> None:
        self.pending: list[asyncio.Future[list[Bookmark]]] = []
        self.list_calls = 0

    async def list_bookmarks(self) -> list[Bookmark]:
        self.list_calls += 1
        future: asyncio.Future[list[Bookmark]] = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


class FakeConnection:
    """A change feed connection fed from a queue; None ends the stream."""

    def __init__(self) -> None:
        self.messages: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self.closed = False

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str | bytes:
        message = await self.messages.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnector:
    """
    Replacement for websockets.connect that hands out FakeConnections.

    `fail_next` makes that many upcoming connection attempts raise OSError; while
    `reject` is set, every attempt raises it instead.
    """

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.fail_next = 0
        self.reject: Exception | None = None
        self.opened = asyncio.Event()

    def __call__(self, url: str) -> Any:
        return self._connect(url)

    @asynccontextmanager
    async def _connect(self, url: str) -> AsyncGenerator[FakeConnection]:
        self.urls.append(url)
        if self.reject is not None:
            raise self.reject
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection refused")
        connection = FakeConnection()
        self.connections.append(connection)
        self.opened.set()
        try:
            yield connection
        finally:
            connection.closed = True

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]

    async def wait_for_connections(self, count: int, timeout: float = 1.0) -> None:
        """Wait until `count` connections have been opened."""

        async def _wait() -> None:
            while len(self.connections) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait(), timeout=timeout)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
