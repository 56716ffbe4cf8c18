"""Tests for the bookmark API client helpers."""
import httpx
import pytest
import respx
from httpx import Response

from bookmark_client.api_client import BookmarksApi, api_delete, api_get, api_post
from bookmark_client.exceptions import FetchError, MutationError, SessionError

USER_ID = "0190f3c2-aaaa-7000-8000-000000000001"
API_URL = "http://localhost:8000"


async def test__api_get__request_source_header_set(mock_api: respx.MockRouter) -> None:
    """Test that X-Request-Source header is set to bookmark-client."""
    mock_api.get("/test").mock(return_value=Response(200, json={}))

    async with httpx.AsyncClient(base_url=API_URL) as client:
        await api_get(client, "/test", "token")

    assert mock_api.calls[0].request.headers["x-request-source"] == "bookmark-client"


async def test__api_post__authorization_header_set(mock_api: respx.MockRouter) -> None:
    """Test that Authorization header is correctly set."""
    mock_api.post("/test").mock(return_value=Response(201, json={}))

    async with httpx.AsyncClient(base_url=API_URL) as client:
        await api_post(client, "/test", "token_12345", {"key": "value"})

    assert mock_api.calls[0].request.headers["authorization"] == "Bearer token_12345"


async def test__api_delete__raises_on_error_status(mock_api: respx.MockRouter) -> None:
    mock_api.delete("/test").mock(return_value=Response(500))

    async with httpx.AsyncClient(base_url=API_URL) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await api_delete(client, "/test", "token")


async def test__list_bookmarks__parses_records(
    api: BookmarksApi,
    mock_api: respx.MockRouter,
) -> None:
    """Naive timestamps are read as UTC and ids are kept as strings."""
    mock_api.get("/bookmarks/").mock(
        return_value=Response(
            200,
            json=[
                {
                    "id": "0190f3c2-0000-7000-8000-0000000000aa",
                    "user_id": USER_ID,
                    "title": "Docs",
                    "url": "https://docs.python.org/",
                    "created_at": "2024-06-01T12:00:00",
                    "updated_at": "2024-06-01T12:00:00",
                },
            ],
        ),
    )

    records = await api.list_bookmarks()

    assert len(records) == 1
    assert records[0].id == "0190f3c2-0000-7000-8000-0000000000aa"
    assert records[0].created_at.tzinfo is not None


@pytest.mark.parametrize(
    "response",
    [Response(500), Response(200, json={"not": "a list"}), Response(200, json=[{"id": 1}])],
)
async def test__list_bookmarks__failures_raise_fetch_error(
    api: BookmarksApi,
    mock_api: respx.MockRouter,
    response: Response,
) -> None:
    mock_api.get("/bookmarks/").mock(return_value=response)

    with pytest.raises(FetchError):
        await api.list_bookmarks()


async def test__create_bookmark__validation_error_raises_mutation_error(
    api: BookmarksApi,
    mock_api: respx.MockRouter,
) -> None:
    mock_api.post("/bookmarks/").mock(return_value=Response(422, json={"detail": []}))

    with pytest.raises(MutationError):
        await api.create_bookmark("T", "not-a-url")


async def test__calls_without_token_raise_session_error(
    http: httpx.AsyncClient,
    mock_api: respx.MockRouter,
) -> None:
    api = BookmarksApi(http, lambda: None)

    with pytest.raises(SessionError):
        await api.list_bookmarks()
    assert mock_api.calls.call_count == 0
