import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from redis.exceptions import LockNotOwnedError

from backend import MemoryRoomStore, RedisRoomStore, create_room_store
from errors import AlreadyMember, NotFound, StoreUnavailable
from schemas.rooms import Client, Room


def test_get_missing_room_raises_not_found(store):
    with pytest.raises(NotFound):
        store.get("nope")


def test_create_overwrites_existing_room(store):
    store.create(Room(id="r", clients={"a": Client(id="a")}))
    stored = store.create(Room(id="r", clients={"b": Client(id="b")}))

    assert stored.client_ids() == ["b"]
    assert store.get("r").client_ids() == ["b"]


def test_update_unknown_room_fails_and_creates_nothing(store):
    with pytest.raises(NotFound):
        store.update(Room(id="ghost", clients={"a": Client(id="a")}))

    with pytest.raises(NotFound):
        store.get("ghost")
    assert store.list_rooms() == []


def test_update_replaces_existing_room(store):
    store.create(Room(id="r"))
    room = store.get("r")
    room.add(Client(id="a"))
    store.update(room)

    assert store.get("r").client_ids() == ["a"]


def test_returned_rooms_are_copies(store):
    store.create(Room(id="r"))
    room = store.get("r")
    room.add(Client(id="a"))

    assert store.get("r").clients == {}


def test_get_by_client_id(store):
    store.add_client("r1", Client(id="a"))
    store.add_client("r2", Client(id="b"))

    assert store.get_by_client_id("b").id == "r2"
    with pytest.raises(NotFound):
        store.get_by_client_id("zzz")


def test_get_or_create_keeps_existing_room(store):
    created = store.get_or_create("r")
    store.add_client("r", Client(id="a"))
    again = store.get_or_create("r")

    assert created.clients == {}
    assert again.client_ids() == ["a"]


def test_membership_is_exclusive(store):
    store.add_client("r1", Client(id="a"))

    with pytest.raises(AlreadyMember):
        store.add_client("r2", Client(id="a"))
    with pytest.raises(AlreadyMember):
        store.add_client("r1", Client(id="a"))

    with pytest.raises(NotFound):
        store.get("r2")


def test_remove_client_deletes_empty_room(store):
    store.add_client("r", Client(id="a"))
    store.add_client("r", Client(id="b"))

    remaining = store.remove_client("r", "a")
    assert remaining.client_ids() == ["b"]
    with pytest.raises(NotFound):
        store.get_by_client_id("a")

    store.remove_client("r", "b")
    with pytest.raises(NotFound):
        store.get("r")


def test_remove_client_not_in_room(store):
    store.add_client("r", Client(id="a"))
    with pytest.raises(NotFound):
        store.remove_client("r", "b")
    with pytest.raises(NotFound):
        store.remove_client("missing", "a")


def test_concurrent_joins_keep_every_client():
    store = MemoryRoomStore()
    start = threading.Barrier(16)

    def join(i):
        start.wait()
        store.add_client("lobby", Client(id=f"client-{i}"))

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(join, range(16)))

    assert len(store.get("lobby").clients) == 16


def test_concurrent_joins_and_leaves_across_rooms():
    store = MemoryRoomStore()
    for i in range(20):
        store.add_client(f"room-{i % 4}", Client(id=f"old-{i}"))

    def churn(i):
        store.add_client(f"room-{i % 4}", Client(id=f"new-{i}"))
        store.remove_client(f"room-{i % 4}", f"old-{i}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(churn, range(20)))

    members = [cid for room in store.list_rooms() for cid in room.client_ids()]
    assert sorted(members) == sorted(f"new-{i}" for i in range(20))
    assert len(members) == len(set(members))


def test_create_room_store_falls_back_to_memory():
    assert isinstance(create_room_store("memory"), MemoryRoomStore)
    assert isinstance(create_room_store("bogus"), MemoryRoomStore)


class ExpiringLock:
    def __init__(self, acquired=True):
        self.acquired = acquired
        self.released = False

    def acquire(self):
        return self.acquired

    def release(self):
        self.released = True
        raise LockNotOwnedError("Cannot release a lock that's no longer owned")


class LockOnlyRedis:
    def __init__(self, lock):
        self._lock = lock

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self._lock


def test_redis_lock_timeout_is_reported_as_store_error():
    store = RedisRoomStore(LockOnlyRedis(ExpiringLock(acquired=False)), lock_timeout=0.1)

    with pytest.raises(StoreUnavailable):
        with store.locked("r"):
            pass


def test_redis_lock_expiring_while_held_is_reported_as_store_error():
    lock = ExpiringLock()
    store = RedisRoomStore(LockOnlyRedis(lock), lock_timeout=0.1)

    with pytest.raises(StoreUnavailable):
        with store.locked("r"):
            pass
    assert lock.released
    # the room is no longer considered held by this thread
    assert store._held.rooms == set()
