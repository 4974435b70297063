"""
Signaling router

Consumes messages from sessions, updates the room store and queues outgoing
messages on the sessions of the peers involved. Every handler is synchronous,
so a join's ``new-client`` fan-out completes before any later message is
processed.
"""

import json
import uuid
from typing import Optional

from pydantic import ValidationError

from backend import RoomStore
from constants import STORE_RETRY_ATTEMPTS
from errors import NotFound, NotInRoom, AlreadyMember, ProtocolError, SignalingError, StaleTarget
from logging_config import get_logger
from schemas.messages import JoinPayload, Message, MessageType, RELAYED_TYPES, SdpPayload
from schemas.rooms import Client, Room
from sessions import Session, SessionRegistry, SessionState

logger = get_logger(__name__)


def generate_client_id() -> str:
    return uuid.uuid4().hex


class SignalingRouter:
    def __init__(self, store: RoomStore, registry: Optional[SessionRegistry] = None):
        self.store = store
        self.registry = registry or SessionRegistry()

    def connect(self, session: Session) -> str:
        """Assign a fresh client id to a newly accepted session and tell the client about it."""
        client_id = generate_client_id()
        session.identify(client_id)
        self.registry.register(session)
        session.send(Message.build(MessageType.NOTIFY_CLIENT_ID, client_id=client_id))
        logger.info(f"Connection {client_id} identified")
        return client_id

    def dispatch(self, session: Session, raw: str) -> None:
        if session.closed:
            logger.debug(f"Ignoring message from closed session {session.client_id}")
            return
        try:
            message = self.decode(raw)
            self.handle(session, message)
        except ProtocolError as e:
            logger.warning(f"Protocol error from connection {session.client_id}: {e.message}")
            self.send_error(session, e)
            self.disconnect(session)
        except StaleTarget as e:
            logger.warning(f"Dropping message from connection {session.client_id}: {e.message}")
        except SignalingError as e:
            logger.warning(f"Rejected message from connection {session.client_id}: {e.message}")
            self.send_error(session, e)

    @staticmethod
    def decode(raw: str) -> Message:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise ProtocolError(f"Message is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise ProtocolError("Message must be a JSON object")
        try:
            return Message.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid message envelope: {e.errors()[0]['msg']}")

    def handle(self, session: Session, message: Message) -> None:
        logger.debug(f"Received {message.type.value} from connection {session.client_id}")
        if message.type == MessageType.JOIN:
            self.handle_join(session, message)
        elif message.type == MessageType.LEAVE:
            self.disconnect(session)
        elif message.type in RELAYED_TYPES:
            self.handle_relay(session, message)
        else:
            raise ProtocolError(f"Message type {message.type.value} cannot be sent by clients")

    def handle_join(self, session: Session, message: Message) -> None:
        try:
            payload = JoinPayload.model_validate(message.payload)
        except ValidationError:
            raise ProtocolError("join requires a non-empty room_id")
        if session.state == SessionState.IN_ROOM:
            raise AlreadyMember(f"Connection {session.client_id} already joined room {session.room_id}")

        room = self.store.add_client(payload.room_id, Client(id=session.client_id))
        session.enter_room(room.id)
        logger.info(f"User {session.client_id} joined room {room.id} ({len(room.clients)} clients)")

        for client_id in room.client_ids():
            if client_id == session.client_id:
                continue
            peer = self.registry.get(client_id)
            if peer is None:
                logger.warning(f"Room {room.id} lists {client_id} but it has no live connection")
                continue
            peer.send(Message.build(MessageType.NEW_CLIENT, client_id=session.client_id))
        logger.debug(f"Notified {len(room.clients) - 1} members of room {room.id} about {session.client_id}")

    def handle_relay(self, session: Session, message: Message) -> None:
        if session.state != SessionState.IN_ROOM:
            raise NotInRoom(f"Connection {session.client_id} must join a room before sending {message.type.value}")
        try:
            payload = SdpPayload.model_validate(message.payload)
        except ValidationError:
            raise ProtocolError(f"{message.type.value} requires client_id and sdp")

        target = self.registry.get(payload.client_id)
        if target is None or target.closed or target.room_id != session.room_id:
            raise StaleTarget(f"{message.type.value} addressed to {payload.client_id} which is not in room {session.room_id}")

        forwarded = dict(message.payload)
        forwarded["client_id"] = session.client_id
        target.send(Message(type=message.type, payload=forwarded))
        logger.debug(f"Forwarded {message.type.value} from {session.client_id} to {target.client_id}")

    def disconnect(self, session: Session) -> None:
        """Close a session: leave its room, notify the remaining members and forget it. Idempotent."""
        if session.closed:
            return
        room_id = session.room_id
        client_id = session.client_id
        # leave the store before dropping local state
        room = self.leave_room(room_id, client_id) if room_id is not None else None
        session.mark_closed()
        if client_id is not None:
            self.registry.unregister(client_id)

        if room_id is None:
            logger.info(f"Connection {client_id} closed before joining a room")
            return
        if room is None:
            return
        logger.info(f"User {client_id} left room {room_id}")

        for peer_id in room.client_ids():
            if peer_id == client_id:
                continue
            peer = self.registry.get(peer_id)
            if peer is not None:
                peer.send(Message.build(MessageType.LEAVE_CLIENT, client_id=client_id))

    def leave_room(self, room_id: str, client_id: str) -> Optional[Room]:
        """Remove a client from the store, retrying when the store is unavailable.

        Returns the room whose members should hear about the leave, or None when
        the client was not listed. If every attempt fails, the last readable
        state of the room is returned so the other members can still tear down
        their connections.
        """
        for attempt in range(1, STORE_RETRY_ATTEMPTS + 1):
            try:
                return self.store.remove_client(room_id, client_id)
            except NotFound:
                logger.warning(f"Connection {client_id} was not listed in room {room_id}")
                return None
            except SignalingError as e:
                logger.warning(f"Removing {client_id} from room {room_id} failed (attempt {attempt}): {e.message}")

        logger.error(f"Could not remove {client_id} from room {room_id} after {STORE_RETRY_ATTEMPTS} attempts")
        try:
            return self.store.get(room_id)
        except SignalingError as e:
            logger.error(f"Could not read room {room_id} to announce the leave of {client_id}: {e.message}")
            return None

    @staticmethod
    def send_error(session: Session, error: SignalingError) -> None:
        session.send(Message(type=MessageType.ERROR, payload=error.to_payload()))
