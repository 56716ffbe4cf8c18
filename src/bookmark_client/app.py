"""Application controller: view state plus the wiring between client components."""
import logging
from enum import StrEnum

import httpx

from bookmark_client.api_client import BookmarksApi, create_http_client
from bookmark_client.config import ClientSettings, get_client_settings
from bookmark_client.gateway import MutationGateway
from bookmark_client.models import Bookmark, Session
from bookmark_client.session import AuthClient, SessionGuard, SessionStore
from bookmark_client.store import BookmarkListStore
from bookmark_client.subscriber import ChangeStreamSubscriber, Connect

logger = logging.getLogger(__name__)


class View(StrEnum):
    """Which view the user is looking at."""

    LOADING = "loading"
    LOGIN = "login"
    MAIN = "main"


class BookmarkApp:
    """
    Owns the client components for one running app.

    The user identity flows explicitly from the session guard into the store and the
    subscriber; whenever it changes, the subscriber is re-attached before the store
    reloads so no change is missed in between. Use as an async context manager so the
    subscription is always released on teardown.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        session_store: SessionStore | None = None,
        connect: Connect | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_client_settings()
        self._owns_http = http is None
        self.http = http if http is not None else create_http_client(self.settings)

        if session_store is None:
            session_store = SessionStore(self.settings.session_file, self.settings.access_token)
        self.auth = AuthClient(self.settings, session_store)
        self.api = BookmarksApi(self.http, self.auth.get_access_token)
        self.guard = SessionGuard(self.api)
        self.store = BookmarkListStore(self.api)
        self.gateway = MutationGateway(self.api, self.store, self.auth)
        self.subscriber = ChangeStreamSubscriber(
            self.store,
            self.settings,
            self.auth.get_access_token,
            connect=connect,
            on_resync=self.store.load,
        )
        self.view = View.LOADING

    @property
    def session(self) -> Session | None:
        """Current authenticated session, if any."""
        return self.guard.session

    async def start(self, live: bool = True) -> View:
        """
        Check the session and, if signed in, load the list.

        With `live` the app also subscribes to the change feed; one-shot commands pass
        False and never open a connection.
        """
        return await self.refresh_session(live=live)

    async def refresh_session(self, live: bool = True) -> View:
        """
        Re-check the session and follow any change of user.

        Signed out: the subscription is dropped and the login view shown. Signed in as
        a different user than before: re-attach (if `live`) and reload for the new user.
        """
        previous_user = self.guard.user_id
        session = await self.guard.initialize()
        if session is None:
            await self.subscriber.detach()
            self.store.clear()
            self.view = View.LOGIN
            return self.view

        if session.user_id != previous_user or (
            live and self.subscriber.user_id != session.user_id
        ):
            await self._switch_user(session.user_id, live)
        self.view = View.MAIN
        return self.view

    async def _switch_user(self, user_id: str, live: bool) -> None:
        logger.info("switching_user", extra={"user_id": user_id, "live": live})
        if live:
            await self.subscriber.attach(user_id)
        else:
            await self.subscriber.detach()
        await self.store.load(user_id)

    async def add_bookmark(self) -> Bookmark | None:
        """Create a bookmark from the add-bookmark form."""
        session = self.guard.session
        if session is None:
            logger.info("Ignoring add: not signed in")
            return None
        return await self.gateway.submit_form(session.user_id)

    async def delete_bookmark(self, bookmark_id: str) -> bool:
        """Delete one of the user's bookmarks."""
        if self.guard.session is None:
            logger.info("Ignoring delete: not signed in")
            return False
        return await self.gateway.delete(bookmark_id)

    async def logout(self) -> None:
        """Sign out and return to the login view."""
        await self.subscriber.detach()
        await self.gateway.logout()
        self.guard.reset()
        self.view = View.LOGIN

    async def close(self) -> None:
        """Release the subscription and the HTTP client."""
        await self.subscriber.detach()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "BookmarkApp":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
