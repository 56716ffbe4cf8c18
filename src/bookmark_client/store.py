"""
In-memory, newest-first list of the signed-in user's bookmarks.

The store is fed from two directions that race each other: the user's own writes
(applied optimistically once the server confirms them) and the change feed, which
echoes those same writes back some time later, possibly out of order. Every mutation
is therefore an id-keyed, idempotent merge:

- insert adds a record only if its id is absent,
- update replaces a record only if its id is present,
- delete removes by id and remembers the id, so a late insert or update echo for a
  record that is already gone cannot bring it back. The id is forgotten once a later
  load shows the server no longer has it.

All mutation methods are synchronous, so each one runs to completion within a single
event-loop step; no locking is needed. Only `load` awaits, and mutations that land
while it is waiting are replayed on top of the fetched snapshot.
"""
import logging
from collections.abc import Callable, Iterator
from functools import partial

from bookmark_client.api_client import BookmarksApi
from bookmark_client.exceptions import FetchError, SessionError
from bookmark_client.models import Bookmark

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


def sort_newest_first(records: list[Bookmark]) -> list[Bookmark]:
    """Order records by created_at descending, ties broken by id descending."""
    return sorted(records, key=lambda record: record.sort_key, reverse=True)


class BookmarkListStore:
    """Ordered collection holding at most one record per id, all owned by one user."""

    def __init__(self, api: BookmarksApi) -> None:
        self._api = api
        self._user_id: str | None = None
        self._records: list[Bookmark] = []
        self._deleted_ids: set[str] = set()
        self._load_generation = 0
        self._replay: list[Callable[[], bool]] | None = None
        self._listeners: list[Listener] = []

    @property
    def user_id(self) -> str | None:
        """The user whose bookmarks the store holds."""
        return self._user_id

    @property
    def bookmarks(self) -> tuple[Bookmark, ...]:
        """Snapshot of the current list, newest first."""
        return tuple(self._records)

    @property
    def loading(self) -> bool:
        """Whether a load is in flight."""
        return self._replay is not None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Bookmark]:
        return iter(tuple(self._records))

    def __contains__(self, bookmark_id: object) -> bool:
        return self._index_of(bookmark_id) is not None

    def get(self, bookmark_id: str) -> Bookmark | None:
        """Look up a record by id."""
        index = self._index_of(bookmark_id)
        return self._records[index] if index is not None else None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` after every change to the list. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def load(self, user_id: str) -> bool:
        """
        Replace the list with the server's current bookmarks for `user_id`.

        Loading for a different user than the store currently holds empties the store
        first, so another user's records are never shown, even if the fetch fails. On
        failure the (possibly emptied) list is otherwise left untouched. A load that is
        overtaken by a newer load or by `clear` discards its result.

        Returns:
            True if the list was replaced.
        """
        if user_id != self._user_id:
            self._reset(user_id)
            self._notify()

        self._load_generation += 1
        generation = self._load_generation
        tombstones = set(self._deleted_ids)
        self._replay = []
        replay: list[Callable[[], bool]] | None = None

        try:
            records = await self._api.list_bookmarks()
        except (FetchError, SessionError) as e:
            logger.warning("Failed to load bookmarks for user %s: %s", user_id, e)
            return False
        finally:
            # Also runs on cancellation, so an abandoned load never leaves the store loading
            if generation == self._load_generation:
                replay, self._replay = self._replay, None

        if generation != self._load_generation or user_id != self._user_id:
            logger.info("bookmark_load_superseded", extra={"user_id": user_id})
            return False

        # Deletes already settled before this fetch and confirmed by its snapshot
        self._deleted_ids -= tombstones - {record.id for record in records}

        snapshot: dict[str, Bookmark] = {}
        for record in records:
            if record.user_id != user_id:
                logger.warning(
                    "Ignoring bookmark %s owned by another user", record.id,
                )
                continue
            if record.id in self._deleted_ids:
                continue
            snapshot.setdefault(record.id, record)
        self._records = sort_newest_first(list(snapshot.values()))

        for operation in replay or ():
            operation()

        logger.info(
            "bookmarks_loaded",
            extra={"user_id": user_id, "count": len(self._records)},
        )
        self._notify()
        return True

    def apply_insert(self, record: Bookmark) -> bool:
        """Add `record` at its newest-first position unless its id is already present."""
        return self._apply(partial(self._insert, record))

    def apply_update(self, record: Bookmark) -> bool:
        """Replace the record with the same id; no-op if absent."""
        return self._apply(partial(self._update, record))

    def apply_delete(self, bookmark_id: str) -> bool:
        """Remove the record with `bookmark_id`; no-op if absent."""
        return self._apply(partial(self._delete, bookmark_id))

    def clear(self) -> None:
        """Empty the store, forget its user and abandon any in-flight load."""
        self._load_generation += 1
        self._reset(None)
        self._notify()

    def _apply(self, operation: Callable[[], bool]) -> bool:
        changed = operation()
        if self._replay is not None:
            self._replay.append(operation)
        if changed:
            self._notify()
        return changed

    def _reset(self, user_id: str | None) -> None:
        self._user_id = user_id
        self._records = []
        self._deleted_ids = set()
        self._replay = None

    def _index_of(self, bookmark_id: object) -> int | None:
        for index, record in enumerate(self._records):
            if record.id == bookmark_id:
                return index
        return None

    def _accepts(self, record: Bookmark) -> bool:
        if self._user_id is None or record.user_id != self._user_id:
            logger.debug("Ignoring bookmark %s outside the store's scope", record.id)
            return False
        return record.id not in self._deleted_ids

    def _insert(self, record: Bookmark) -> bool:
        if not self._accepts(record) or self._index_of(record.id) is not None:
            return False
        position = len(self._records)
        for index, existing in enumerate(self._records):
            if existing.sort_key < record.sort_key:
                position = index
                break
        self._records.insert(position, record)
        return True

    def _update(self, record: Bookmark) -> bool:
        if not self._accepts(record):
            return False
        index = self._index_of(record.id)
        if index is None or self._records[index] == record:
            return False
        previous = self._records[index]
        self._records[index] = record
        if previous.created_at != record.created_at:
            self._records = sort_newest_first(self._records)
        return True

    def _delete(self, bookmark_id: str) -> bool:
        if self._user_id is None:
            return False
        self._deleted_ids.add(bookmark_id)
        index = self._index_of(bookmark_id)
        if index is None:
            return False
        del self._records[index]
        return True

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Bookmark list listener failed")
