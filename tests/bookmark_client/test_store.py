"""Tests for the bookmark list store."""
import asyncio
import random
from collections.abc import Callable

import pytest

from bookmark_client.exceptions import FetchError
from bookmark_client.models import Bookmark
from bookmark_client.store import BookmarkListStore, sort_newest_first

USER_ID = "0190f3c2-aaaa-7000-8000-000000000001"
OTHER_USER_ID = "0190f3c2-bbbb-7000-8000-000000000002"

MakeBookmark = Callable[..., Bookmark]


@pytest.fixture
def store(fake_api) -> BookmarkListStore:  # noqa: ANN001
    return BookmarkListStore(fake_api)


async def load_with(store: BookmarkListStore, fake_api, records: list[Bookmark]) -> bool:  # noqa: ANN001
    """Run a load and complete it with `records`."""
    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    fake_api.pending[-1].set_result(records)
    return await task


def ids(store: BookmarkListStore) -> list[str]:
    return [record.id for record in store]


# =============================================================================
# load Tests
# =============================================================================


async def test__load__orders_newest_first(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """The store orders records by created_at descending regardless of input order."""
    older, newer = make_bookmark("2", minutes=1), make_bookmark("1", minutes=2)

    assert await load_with(store, fake_api, [older, newer]) is True

    assert ids(store) == ["1", "2"]
    assert store.user_id == USER_ID
    assert store.loading is False


async def test__load__insert_then_delete_scenario(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """Load [1 (T2), 2 (T1)], insert 3 (T3), delete 1: [1,2] -> [3,1,2] -> [3,2]."""
    await load_with(
        store, fake_api, [make_bookmark("1", minutes=2), make_bookmark("2", minutes=1)],
    )
    assert ids(store) == ["1", "2"]

    store.apply_insert(make_bookmark("3", minutes=3))
    assert ids(store) == ["3", "1", "2"]

    store.apply_delete("1")
    assert ids(store) == ["3", "2"]


async def test__load__failure_keeps_current_list(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """A failed fetch leaves the list as it was."""
    await load_with(store, fake_api, [make_bookmark("1")])

    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    fake_api.pending[-1].set_exception(FetchError("boom"))

    assert await task is False
    assert ids(store) == ["1"]
    assert store.loading is False


async def test__load__drops_duplicates_and_foreign_records(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """Duplicate ids collapse to one record and other users' rows are ignored."""
    records = [
        make_bookmark("1", minutes=1),
        make_bookmark("1", minutes=1),
        make_bookmark("2", user_id=OTHER_USER_ID),
    ]

    await load_with(store, fake_api, records)

    assert ids(store) == ["1"]


async def test__load__for_new_user_resets_store(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """Switching users empties the store immediately, even if the fetch then fails."""
    await load_with(store, fake_api, [make_bookmark("1")])

    task = asyncio.create_task(store.load(OTHER_USER_ID))
    await asyncio.sleep(0)
    assert len(store) == 0
    assert store.user_id == OTHER_USER_ID

    fake_api.pending[-1].set_exception(FetchError("boom"))
    assert await task is False
    assert len(store) == 0


async def test__load__replays_mutations_made_while_in_flight(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """Changes applied during a load survive the snapshot replacing the list."""
    await load_with(store, fake_api, [make_bookmark("1", minutes=1)])

    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    assert store.loading is True

    store.apply_insert(make_bookmark("3", minutes=3))
    store.apply_delete("2")
    # Snapshot was taken before both changes
    fake_api.pending[-1].set_result(
        [make_bookmark("1", minutes=1), make_bookmark("2", minutes=2)],
    )

    assert await task is True
    assert ids(store) == ["3", "1"]


async def test__load__superseded_load_is_discarded(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """When two loads overlap, only the newest one's result is applied."""
    first = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    second = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)

    fake_api.pending[1].set_result([make_bookmark("new")])
    assert await second is True
    fake_api.pending[0].set_result([make_bookmark("stale")])
    assert await first is False

    assert ids(store) == ["new"]


async def test__load__discarded_after_clear(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """A load still in flight when the store is cleared (logout) has no effect."""
    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    store.clear()

    fake_api.pending[-1].set_result([make_bookmark("1")])

    assert await task is False
    assert len(store) == 0
    assert store.user_id is None


async def test__load__cancelled_load_stops_loading(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """A load cancelled mid-fetch (e.g. its subscription detached) leaves the store usable."""
    await load_with(store, fake_api, [make_bookmark("1", minutes=1)])

    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    assert store.loading is True
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.loading is False
    for minute in range(2, 102):
        store.apply_insert(make_bookmark(f"n{minute}", minutes=minute))
    assert store.loading is False
    assert len(store) == 101

    assert await load_with(store, fake_api, [make_bookmark("1", minutes=1)]) is True
    assert ids(store) == ["1"]


# =============================================================================
# apply_insert / apply_update / apply_delete Tests
# =============================================================================


async def test__apply_insert__is_idempotent(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [])
    record = make_bookmark("1")

    assert store.apply_insert(record) is True
    assert store.apply_insert(record) is False

    assert ids(store) == ["1"]


async def test__apply_insert__places_record_by_created_at(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """An out-of-order insert lands at its sorted position, not at the head."""
    await load_with(
        store, fake_api, [make_bookmark("a", minutes=3), make_bookmark("c", minutes=1)],
    )

    store.apply_insert(make_bookmark("b", minutes=2))
    store.apply_insert(make_bookmark("d", minutes=0))

    assert ids(store) == ["a", "b", "c", "d"]


async def test__apply_insert__ignores_other_users(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [])

    assert store.apply_insert(make_bookmark("1", user_id=OTHER_USER_ID)) is False
    assert len(store) == 0


async def test__apply_insert__ignored_without_user(
    store: BookmarkListStore,
    make_bookmark: MakeBookmark,
) -> None:
    """A store that was never loaded (or was cleared) accepts nothing."""
    assert store.apply_insert(make_bookmark("1")) is False
    assert len(store) == 0


async def test__apply_update__replaces_existing_only(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [make_bookmark("1")])

    assert store.apply_update(make_bookmark("1", title="Renamed")) is True
    assert store.get("1").title == "Renamed"

    assert store.apply_update(make_bookmark("missing")) is False
    assert "missing" not in store


async def test__apply_update__same_record_is_no_op(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    record = make_bookmark("1")
    await load_with(store, fake_api, [record])
    notified: list[None] = []
    store.add_listener(lambda: notified.append(None))

    assert store.apply_update(record) is False
    assert notified == []


async def test__apply_delete__is_idempotent(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [make_bookmark("1"), make_bookmark("2", minutes=1)])

    assert store.apply_delete("1") is True
    assert store.apply_delete("1") is False
    assert store.apply_delete("never-existed") is False

    assert ids(store) == ["2"]


async def test__apply_delete__late_echo_cannot_resurrect(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """An insert or update echo arriving after the delete is ignored."""
    record = make_bookmark("1")
    await load_with(store, fake_api, [record])

    store.apply_delete("1")
    assert store.apply_insert(record) is False
    assert store.apply_update(make_bookmark("1", title="Late")) is False

    assert len(store) == 0


async def test__apply_delete__before_insert_echo(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """A delete for a record the store has not seen yet still wins."""
    await load_with(store, fake_api, [])

    store.apply_delete("1")
    store.apply_insert(make_bookmark("1"))

    assert len(store) == 0


async def test__apply_delete__tombstone_dropped_once_load_confirms(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """Deleted ids are forgotten after a snapshot without them, and kept otherwise."""
    await load_with(store, fake_api, [make_bookmark("1"), make_bookmark("2")])
    store.apply_delete("1")
    store.apply_delete("2")

    # The server still has "2"; its tombstone must keep hiding it
    await load_with(store, fake_api, [make_bookmark("2")])
    assert len(store) == 0
    assert store.apply_insert(make_bookmark("2")) is False

    assert store.apply_insert(make_bookmark("1")) is True
    assert ids(store) == ["1"]


async def test__apply_delete__during_load_keeps_tombstone(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """A delete that lands while a load is in flight is not confirmed by that load."""
    await load_with(store, fake_api, [make_bookmark("1")])

    task = asyncio.create_task(store.load(USER_ID))
    await asyncio.sleep(0)
    store.apply_delete("1")
    fake_api.pending[-1].set_result([])
    assert await task is True

    assert store.apply_insert(make_bookmark("1")) is False
    assert len(store) == 0


# =============================================================================
# Listener Tests
# =============================================================================


async def test__listeners__notified_on_change_only(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [])
    calls: list[int] = []
    remove = store.add_listener(lambda: calls.append(len(store)))

    store.apply_insert(make_bookmark("1"))
    store.apply_insert(make_bookmark("1"))
    store.apply_delete("1")
    remove()
    store.apply_insert(make_bookmark("2"))

    assert calls == [1, 0]


async def test__listeners__failing_listener_does_not_break_store(
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    await load_with(store, fake_api, [])
    seen: list[str] = []

    def broken() -> None:
        raise RuntimeError("listener bug")

    store.add_listener(broken)
    store.add_listener(lambda: seen.extend(ids(store)))

    assert store.apply_insert(make_bookmark("1")) is True
    assert seen == ["1"]


# =============================================================================
# Interleaving
# =============================================================================


@pytest.mark.parametrize("seed", range(20))
async def test__interleaved_mutations__converge_without_duplicates(
    seed: int,
    store: BookmarkListStore,
    fake_api,  # noqa: ANN001
    make_bookmark: MakeBookmark,
) -> None:
    """
    Local writes and their feed echoes, applied in any order, converge.

    Every record is inserted twice (local + echo), some are deleted (local + echo), and
    the operations are shuffled subject to each delete following the record's first
    insert. The result always holds each surviving id exactly once, sorted.
    """
    rng = random.Random(seed)
    await load_with(store, fake_api, [])

    records = [make_bookmark(f"r{i}", minutes=rng.randint(0, 50)) for i in range(12)]
    deleted = {r.id for r in records if rng.random() < 0.4}

    # One queue of operations per record; its first insert always comes first
    queues: list[list[tuple[str, Bookmark]]] = []
    for record in records:
        rest = [("insert", record)]
        if record.id in deleted:
            rest += [("delete", record), ("delete", record)]
        rng.shuffle(rest)
        queues.append([("insert", record), *rest])

    # Interleave the per-record queues randomly
    merged: list[tuple[str, Bookmark]] = []
    while any(queues):
        queue = rng.choice([q for q in queues if q])
        merged.append(queue.pop(0))

    for kind, record in merged:
        if kind == "insert":
            store.apply_insert(record)
        else:
            store.apply_delete(record.id)

    expected = sort_newest_first([r for r in records if r.id not in deleted])
    assert ids(store) == [r.id for r in expected]
    assert len(set(ids(store))) == len(store)
