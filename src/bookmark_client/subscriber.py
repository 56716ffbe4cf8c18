"""Live subscription to the bookmark change feed for one user at a time."""
import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, suppress
from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException
from websockets.frames import CloseCode

from bookmark_client.config import ClientSettings
from bookmark_client.exceptions import BookmarkClientError, SessionError, SubscriptionError
from bookmark_client.models import ChangeEvent
from bookmark_client.store import BookmarkListStore

logger = logging.getLogger(__name__)

Connect = Callable[[str], AbstractAsyncContextManager[AsyncIterator[str | bytes]]]
Resync = Callable[[str], Awaitable[object]]


def is_session_rejection(error: WebSocketException) -> bool:
    """Whether the server refused the stream because of the access token."""
    if isinstance(error, InvalidStatus):
        return error.response.status_code in (401, 403)
    if isinstance(error, ConnectionClosed):
        return error.rcvd is not None and error.rcvd.code == CloseCode.POLICY_VIOLATION
    return False


class SubscriberState(StrEnum):
    """Lifecycle of the change stream subscriber."""

    DETACHED = "detached"
    ATTACHED = "attached"


@dataclass(eq=False)
class _Subscription:
    """The single owned handle for one user's stream."""

    user_id: str
    connected: asyncio.Event = field(default_factory=asyncio.Event)
    active: bool = True
    needs_resync: bool = False
    task: asyncio.Task[None] | None = None


class ChangeStreamSubscriber:
    """
    Applies change feed events for the attached user to the bookmark store.

    At most one subscription exists at a time; `attach` always tears down the previous
    one first, and events are dispatched only while their subscription is the current
    one and only if they are scoped to its user. A lost connection is retried with
    capped exponential backoff. Because events may have been missed while
    disconnected, every connection after the first one runs `on_resync` (normally a
    store reload) before dispatching further events. A missing token, or one the server
    refuses, ends the subscription instead; only a new session can fix that.
    """

    def __init__(
        self,
        store: BookmarkListStore,
        settings: ClientSettings,
        token_provider: Callable[[], str | None],
        connect: Connect | None = None,
        on_resync: Resync | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._token_provider = token_provider
        self._connect: Connect = connect if connect is not None else websockets.connect
        self._on_resync = on_resync
        self._subscription: _Subscription | None = None

    @property
    def state(self) -> SubscriberState:
        """DETACHED or ATTACHED."""
        if self._subscription is None:
            return SubscriberState.DETACHED
        return SubscriberState.ATTACHED

    @property
    def user_id(self) -> str | None:
        """The user the current subscription is scoped to."""
        return self._subscription.user_id if self._subscription is not None else None

    @property
    def connected(self) -> bool:
        """Whether the current subscription has a live connection."""
        return self._subscription is not None and self._subscription.connected.is_set()

    async def attach(self, user_id: str) -> None:
        """
        Subscribe to `user_id`'s changes, replacing any previous subscription.

        Waits up to `subscribe_timeout` for the first connection. If it is not up by
        then, the subscription keeps retrying in the background and reloads the store
        once it connects.
        """
        await self.detach()

        subscription = _Subscription(user_id=user_id)
        self._subscription = subscription
        task = asyncio.create_task(
            self._run(subscription), name=f"bookmark-changes-{user_id}",
        )
        subscription.task = task
        logger.info("change_stream_attached", extra={"user_id": user_id})

        waiter = asyncio.create_task(subscription.connected.wait())
        done, _ = await asyncio.wait(
            {waiter, task},
            timeout=self._settings.subscribe_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if waiter in done:
            return
        waiter.cancel()
        with suppress(asyncio.CancelledError):
            await waiter
        if task in done:
            # The stream gave up (no session); nothing left to wait for
            return
        subscription.needs_resync = True
        logger.warning(
            "Change stream for user %s not connected after %.1fs; retrying in background",
            user_id, self._settings.subscribe_timeout,
        )

    async def detach(self) -> None:
        """Cancel the current subscription and close its connection. Safe to repeat."""
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        subscription.active = False
        if subscription.task is not None:
            subscription.task.cancel()
            with suppress(asyncio.CancelledError):
                await subscription.task
        logger.info("change_stream_detached", extra={"user_id": subscription.user_id})

    async def __aenter__(self) -> "ChangeStreamSubscriber":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.detach()

    def _stream_url(self) -> str | None:
        token = self._token_provider()
        if not token:
            return None
        return f"{self._settings.changes_url}?{urlencode({'access_token': token})}"

    async def _run(self, subscription: _Subscription) -> None:
        delay = self._settings.reconnect_initial_delay
        while subscription.active:
            url = self._stream_url()
            if url is None:
                self._give_up(
                    subscription, SessionError("Cannot subscribe to changes without a session"),
                )
                return

            try:
                async with self._connect(url) as connection:
                    if subscription.needs_resync and self._on_resync is not None:
                        await self._on_resync(subscription.user_id)
                    subscription.connected.set()
                    delay = self._settings.reconnect_initial_delay
                    async for message in connection:
                        self._dispatch(subscription, message)
                error = SubscriptionError("Change stream closed by server")
            except WebSocketException as e:
                if is_session_rejection(e):
                    self._give_up(subscription, SessionError(f"Change stream refused session: {e}"))
                    return
                error = SubscriptionError(f"Change stream connection failed: {e}")
            except (OSError, TimeoutError) as e:
                error = SubscriptionError(f"Change stream connection failed: {e}")
            finally:
                subscription.connected.clear()
                subscription.needs_resync = True

            if not subscription.active:
                return
            logger.warning("%s; reconnecting in %.1fs", error, delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._settings.reconnect_max_delay)

    def _give_up(self, subscription: _Subscription, error: BookmarkClientError) -> None:
        """End a subscription that cannot succeed without a new session."""
        subscription.active = False
        if subscription is self._subscription:
            self._subscription = None
        logger.warning("%s; not retrying", error)

    def _dispatch(self, subscription: _Subscription, message: str | bytes) -> None:
        if subscription is not self._subscription or not subscription.active:
            return
        try:
            event = ChangeEvent.model_validate_json(message)
        except ValidationError:
            logger.warning("Discarding malformed change event")
            return
        if event.table != "bookmarks" or event.user_id != subscription.user_id:
            logger.debug(
                "Dropping change event outside subscription scope",
                extra={"event_user_id": event.user_id, "user_id": subscription.user_id},
            )
            return

        if event.event_type == "INSERT" and event.new is not None:
            self._store.apply_insert(event.new)
        elif event.event_type == "UPDATE" and event.new is not None:
            self._store.apply_update(event.new)
        elif event.event_type == "DELETE" and event.old is not None:
            self._store.apply_delete(event.old.id)
