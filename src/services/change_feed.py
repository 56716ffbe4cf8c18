"""
Per-user feed of row-level bookmark changes.

Services record change events on the database session while they work; the session
dependency publishes them only after the request transaction commits, so subscribers
never see a change that was rolled back.

Delivery is always in-process: every API instance keeps its own set of subscriber
queues. When Redis is available, events are published to a per-user channel and a
single pattern subscription per instance fans them into the local queues, so a change
made through one instance reaches WebSocket clients connected to any other. Without
Redis the feed publishes straight into the local queues.
"""
import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from uuid import UUID

from pydantic import ValidationError
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from core.redis import RedisClient
from schemas.change_event import ChangeEvent

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "bookmarks:changes:"
PENDING_CHANGES_KEY = "pending_changes"


def channel_for(user_id: UUID) -> str:
    """Redis channel carrying change events for one user."""
    return f"{CHANNEL_PREFIX}{user_id}"


def record_change(db: AsyncSession, event: ChangeEvent) -> None:
    """Queue a change event on the session, to be published after commit."""
    db.info.setdefault(PENDING_CHANGES_KEY, []).append(event)


def discard_pending_changes(db: AsyncSession) -> None:
    """Drop queued change events (used on rollback)."""
    db.info.pop(PENDING_CHANGES_KEY, None)


async def publish_pending_changes(db: AsyncSession) -> None:
    """Publish and clear the change events queued on a committed session."""
    events: list[ChangeEvent] = db.info.pop(PENDING_CHANGES_KEY, [])
    feed = get_change_feed()
    if feed is None:
        return
    for event in events:
        await feed.publish(event)


class ChangeSubscription:
    """
    Bounded queue of change events for a single connected client.

    Iterating yields events until the subscription is closed. If the consumer falls
    behind and the queue fills up, the subscription is marked as overflowed and closed
    instead of silently dropping events; the client is expected to reconnect and reload.
    """

    def __init__(self, user_id: UUID, maxsize: int) -> None:
        self.user_id = user_id
        self.overflowed = False
        self._closed = False
        # One extra slot so the close sentinel always fits
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize + 1)
        self._maxsize = maxsize

    @property
    def closed(self) -> bool:
        """Whether the subscription has stopped accepting events."""
        return self._closed

    def deliver(self, event: ChangeEvent) -> None:
        """Enqueue an event without blocking the publisher."""
        if self._closed:
            return
        if self._queue.qsize() >= self._maxsize:
            logger.warning(
                "change_feed_overflow",
                extra={"user_id": str(self.user_id), "queue_size": self._maxsize},
            )
            self.overflowed = True
            self.close()
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Stop the subscription; pending iteration ends after queued events."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def __aiter__(self) -> "ChangeSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    """Fan-out of change events to subscribers, optionally bridged through Redis."""

    def __init__(self, redis: RedisClient | None = None, queue_size: int = 256) -> None:
        self._redis = redis
        self._queue_size = queue_size
        self._subscribers: dict[UUID, set[ChangeSubscription]] = {}
        self._pubsub: PubSub | None = None
        self._listener: asyncio.Task[None] | None = None

    @property
    def distributed(self) -> bool:
        """True while events are being relayed through Redis."""
        return self._listener is not None and not self._listener.done()

    def subscriber_count(self, user_id: UUID) -> int:
        """Number of open subscriptions for a user."""
        return len(self._subscribers.get(user_id, ()))

    async def start(self) -> None:
        """Begin relaying through Redis if it is connected."""
        if self._redis is None or not self._redis.is_connected:
            logger.info("Change feed running in-process (Redis unavailable)")
            return
        pubsub = self._redis.pubsub()
        if pubsub is None:
            return
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        except RedisError as e:
            logger.warning("Change feed Redis subscribe failed: %s", e)
            await pubsub.aclose()
            return
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen(pubsub))
        logger.info("Change feed relaying through Redis")

    async def stop(self) -> None:
        """Stop relaying and close every open subscription."""
        if self._listener is not None:
            self._listener.cancel()
            with suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None
        if self._pubsub is not None:
            with suppress(RedisError):
                await self._pubsub.aclose()
            self._pubsub = None
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription.close()
        self._subscribers.clear()

    async def publish(self, event: ChangeEvent) -> None:
        """Publish an event to every subscriber of the event's user."""
        if self.distributed and self._redis is not None:
            published = await self._redis.publish(
                channel_for(event.user_id), event.model_dump_json(),
            )
            if published:
                return
        self._deliver(event)

    @asynccontextmanager
    async def subscribe(self, user_id: UUID) -> AsyncIterator[ChangeSubscription]:
        """Open a subscription to one user's changes for the duration of the block."""
        subscription = ChangeSubscription(user_id, self._queue_size)
        self._subscribers.setdefault(user_id, set()).add(subscription)
        try:
            yield subscription
        finally:
            subscriptions = self._subscribers.get(user_id)
            if subscriptions is not None:
                subscriptions.discard(subscription)
                if not subscriptions:
                    del self._subscribers[user_id]
            subscription.close()

    def _deliver(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers.get(event.user_id, ())):
            subscription.deliver(event)

    async def _listen(self, pubsub: PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                try:
                    event = ChangeEvent.model_validate_json(message["data"])
                except ValidationError:
                    logger.exception("Discarding malformed change event")
                    continue
                self._deliver(event)
        except RedisError as e:
            # Subsequent publishes fall back to in-process delivery
            logger.warning("Change feed Redis listener stopped: %s", e)


# Global change feed state using a container to avoid global statement
class _ChangeFeedState:
    """Container for global change feed state."""

    feed: ChangeFeed | None = None


_state = _ChangeFeedState()


def get_change_feed() -> ChangeFeed | None:
    """Get the global change feed instance."""
    return _state.feed


def set_change_feed(feed: ChangeFeed | None) -> None:
    """Set the global change feed instance."""
    _state.feed = feed
