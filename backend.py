import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List

import redis
from redis.exceptions import LockError

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_LOCK_TIMEOUT, ROOM_STORE_BACKEND
from errors import AlreadyMember, NotFound, StoreUnavailable
from logging_config import get_logger
from redis_keys import REDIS_META_KEY, REDIS_CLIENTS_KEY, REDIS_LOCK_KEY, REDIS_META_PATTERN
from schemas.rooms import Client, Room

logger = get_logger(__name__)


class RoomStore:
    """Registry of rooms keyed by room id.

    Rooms handed out are copies: callers read, mutate the copy and write it
    back with ``update``. Read-modify-write sequences must run inside
    ``locked(room_id)``; ``add_client`` and ``remove_client`` do this for
    membership changes.
    """

    def get(self, room_id: str) -> Room:
        raise NotImplementedError

    def create(self, room: Room) -> Room:
        raise NotImplementedError

    def update(self, room: Room) -> Room:
        raise NotImplementedError

    def delete(self, room_id: str) -> None:
        raise NotImplementedError

    def get_by_client_id(self, client_id: str) -> Room:
        raise NotImplementedError

    def list_rooms(self) -> List[Room]:
        raise NotImplementedError

    def locked(self, room_id: str):
        raise NotImplementedError

    def get_or_create(self, room_id: str) -> Room:
        with self.locked(room_id):
            try:
                return self.get(room_id)
            except NotFound:
                logger.info(f"Creating room {room_id}")
                return self.create(Room(id=room_id))

    def add_client(self, room_id: str, client: Client) -> Room:
        """Add a client to a room, creating the room if needed. Returns the room after the join."""
        with self.locked(room_id):
            try:
                current = self.get_by_client_id(client.id)
            except NotFound:
                current = None
            if current is not None:
                raise AlreadyMember(f"Client {client.id} is already in room {current.id}")

            room = self.get_or_create(room_id)
            room.add(client)
            stored = self.update(room)
            logger.debug(f"Client {client.id} added to room {room_id} ({len(stored.clients)} clients)")
            return stored

    def remove_client(self, room_id: str, client_id: str) -> Room:
        """Remove a client from a room. Empty rooms are deleted. Returns the room after the leave."""
        with self.locked(room_id):
            room = self.get(room_id)
            if not room.has(client_id):
                raise NotFound(f"Client {client_id} is not in room {room_id}")
            room.remove(client_id)
            if room.clients:
                room = self.update(room)
            else:
                self.delete(room_id)
                logger.info(f"Room {room_id} is empty, deleted it")
            logger.debug(f"Client {client_id} removed from room {room_id}")
            return room


class MemoryRoomStore(RoomStore):
    """In-process store. A single re-entrant lock guards the whole mapping."""

    def __init__(self):
        self._rooms = {}
        self._lock = threading.RLock()
        logger.info("Initializing in-memory room store")

    def get(self, room_id: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise NotFound(f"Room {room_id} not found")
            return room.copy_room()

    def create(self, room: Room) -> Room:
        with self._lock:
            self._rooms[room.id] = room.copy_room()
            return room.copy_room()

    def update(self, room: Room) -> Room:
        with self._lock:
            if room.id not in self._rooms:
                raise NotFound(f"Room {room.id} not found")
            self._rooms[room.id] = room.copy_room()
            return room.copy_room()

    def delete(self, room_id: str) -> None:
        with self._lock:
            if self._rooms.pop(room_id, None) is None:
                raise NotFound(f"Room {room_id} not found")

    def get_by_client_id(self, client_id: str) -> Room:
        with self._lock:
            for room in self._rooms.values():
                if room.has(client_id):
                    return room.copy_room()
        raise NotFound(f"No room contains client {client_id}")

    def list_rooms(self) -> List[Room]:
        with self._lock:
            return [room.copy_room() for room in self._rooms.values()]

    @contextmanager
    def locked(self, room_id: str) -> Iterator[None]:
        with self._lock:
            yield


class RedisRoomStore(RoomStore):
    """Store shared by several relay instances through Redis.

    Room metadata lives in a hash, members in a set. Membership updates are
    serialised per room with a Redis lock.
    """

    def __init__(self, redis_client=None, lock_timeout: float = REDIS_LOCK_TIMEOUT):
        if redis_client is None:
            try:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
                redis_client.ping()
                logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
                raise
        self.redis_client = redis_client
        self.lock_timeout = lock_timeout
        # the redis lock is not re-entrant, track which rooms this thread already holds
        self._held = threading.local()

    def _load(self, room_id: str) -> Room:
        meta = self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not meta:
            raise NotFound(f"Room {room_id} not found")
        members = self.redis_client.smembers(REDIS_CLIENTS_KEY.format(slug=room_id))
        return Room(
            id=room_id,
            created_at=meta.get("created_at", datetime.now().isoformat()),
            clients={client_id: Client(id=client_id) for client_id in members},
        )

    def _store(self, room: Room) -> Room:
        meta_key = REDIS_META_KEY.format(slug=room.id)
        clients_key = REDIS_CLIENTS_KEY.format(slug=room.id)
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hset(meta_key, mapping={"id": room.id, "created_at": room.created_at})
        pipe.delete(clients_key)
        if room.clients:
            pipe.sadd(clients_key, *room.clients.keys())
        pipe.execute()
        return room.copy_room()

    def get(self, room_id: str) -> Room:
        logger.debug(f"Fetching room {room_id}")
        return self._load(room_id)

    def create(self, room: Room) -> Room:
        logger.debug(f"Storing room {room.id}")
        return self._store(room)

    def update(self, room: Room) -> Room:
        if not self.redis_client.exists(REDIS_META_KEY.format(slug=room.id)):
            raise NotFound(f"Room {room.id} not found")
        return self._store(room)

    def delete(self, room_id: str) -> None:
        deleted = self.redis_client.delete(
            REDIS_META_KEY.format(slug=room_id), REDIS_CLIENTS_KEY.format(slug=room_id)
        )
        if not deleted:
            raise NotFound(f"Room {room_id} not found")

    def _room_ids(self) -> List[str]:
        prefix = REDIS_META_KEY.format(slug="")
        return [key[len(prefix):] for key in self.redis_client.scan_iter(match=REDIS_META_PATTERN)]

    def get_by_client_id(self, client_id: str) -> Room:
        for room_id in self._room_ids():
            if self.redis_client.sismember(REDIS_CLIENTS_KEY.format(slug=room_id), client_id):
                return self._load(room_id)
        raise NotFound(f"No room contains client {client_id}")

    def list_rooms(self) -> List[Room]:
        rooms = []
        for room_id in self._room_ids():
            try:
                rooms.append(self._load(room_id))
            except NotFound:
                continue
        return rooms

    @contextmanager
    def locked(self, room_id: str) -> Iterator[None]:
        held = getattr(self._held, "rooms", None)
        if held is None:
            held = self._held.rooms = set()
        if room_id in held:
            yield
            return
        lock = self.redis_client.lock(
            REDIS_LOCK_KEY.format(slug=room_id), timeout=self.lock_timeout, blocking_timeout=self.lock_timeout
        )
        if not lock.acquire():
            raise StoreUnavailable(f"Timed out waiting for the lock on room {room_id}")
        held.add(room_id)
        try:
            yield
        finally:
            held.discard(room_id)
            try:
                lock.release()
            except LockError as e:
                # the lock expired while held, another instance may have changed the room
                raise StoreUnavailable(f"Lock on room {room_id} expired before release: {e}")


def create_room_store(backend: str = ROOM_STORE_BACKEND) -> RoomStore:
    if backend == "redis":
        return RedisRoomStore()
    if backend != "memory":
        logger.warning(f"Unknown room store backend {backend!r}, using memory")
    return MemoryRoomStore()


room_store = create_room_store()
