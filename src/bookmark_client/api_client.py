"""HTTP client helpers for talking to the Bookmarks API."""
import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from bookmark_client.config import ClientSettings
from bookmark_client.exceptions import FetchError, MutationError, SessionError
from bookmark_client.models import Bookmark, Session

logger = logging.getLogger(__name__)

REQUEST_SOURCE = "bookmark-client"


def create_http_client(settings: ClientSettings) -> httpx.AsyncClient:
    """Create the shared HTTP client for the configured API."""
    return httpx.AsyncClient(
        base_url=settings.api_url,
        timeout=settings.request_timeout,
    )


def _get_headers(token: str) -> dict[str, str]:
    """Get common headers for API requests."""
    return {
        "Authorization": f"Bearer {token}",
        "X-Request-Source": REQUEST_SOURCE,
    }


async def api_get(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    params: dict[str, Any] | None = None,
) -> Any:
    """Make an authenticated GET request to the API."""
    response = await client.get(
        path,
        params=params,
        headers=_get_headers(token),
    )
    response.raise_for_status()
    return response.json()


async def api_post(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    json: dict[str, Any] | None = None,
) -> Any:
    """Make an authenticated POST request to the API."""
    response = await client.post(
        path,
        json=json,
        headers=_get_headers(token),
    )
    response.raise_for_status()
    return response.json()


async def api_delete(
    client: httpx.AsyncClient,
    path: str,
    token: str,
) -> None:
    """Make an authenticated DELETE request to the API."""
    response = await client.delete(
        path,
        headers=_get_headers(token),
    )
    response.raise_for_status()


class BookmarksApi:
    """
    Typed access to the bookmark endpoints.

    The token is looked up on every call, so signing in or out takes effect without
    rebuilding the client. Transport and decoding failures are translated into the
    client's error taxonomy: SessionError for the session check, FetchError for
    listing, MutationError for writes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_provider: Callable[[], str | None],
    ) -> None:
        self._client = client
        self._token_provider = token_provider

    def _token(self) -> str:
        token = self._token_provider()
        if not token:
            raise SessionError("Not signed in")
        return token

    async def get_me(self) -> Session:
        """Confirm the stored token with the API and return the session it proves."""
        token = self._token()
        try:
            data = await api_get(self._client, "/users/me", token)
            return Session(
                user_id=str(data["id"]),
                email=data.get("email"),
                access_token=token,
            )
        except httpx.HTTPError as e:
            raise SessionError(f"Session check failed: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise SessionError(f"Unexpected session response: {e}") from e

    async def list_bookmarks(self) -> list[Bookmark]:
        """Fetch all of the current user's bookmarks, newest first."""
        token = self._token()
        try:
            data = await api_get(self._client, "/bookmarks/", token)
            return [Bookmark.model_validate(item) for item in data]
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch bookmarks: {e}") from e
        except (ValidationError, TypeError, ValueError) as e:
            raise FetchError(f"Unexpected bookmark list response: {e}") from e

    async def create_bookmark(self, title: str, url: str) -> Bookmark:
        """Create a bookmark and return the stored record."""
        token = self._token()
        try:
            data = await api_post(
                self._client, "/bookmarks/", token, {"title": title, "url": url},
            )
            return Bookmark.model_validate(data)
        except httpx.HTTPError as e:
            raise MutationError(f"Failed to create bookmark: {e}") from e
        except (ValidationError, TypeError, ValueError) as e:
            raise MutationError(f"Unexpected create response: {e}") from e

    async def delete_bookmark(self, bookmark_id: str) -> bool:
        """
        Delete a bookmark.

        Returns:
            True if the server deleted it, False if it was already gone (404).
        """
        token = self._token()
        try:
            await api_delete(self._client, f"/bookmarks/{bookmark_id}", token)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == httpx.codes.NOT_FOUND:
                logger.info("bookmark_already_deleted", extra={"bookmark_id": bookmark_id})
                return False
            raise MutationError(f"Failed to delete bookmark {bookmark_id}: {e}") from e
        except httpx.HTTPError as e:
            raise MutationError(f"Failed to delete bookmark {bookmark_id}: {e}") from e
        return True
