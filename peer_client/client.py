import asyncio
import json
from typing import Callable, Dict, List, Optional, Set

import websockets
from pydantic import ValidationError

from constants import ICE_SERVERS, SIGNALING_ENDPOINT, SIGNALING_PATH
from errors import NegotiationFailure
from logging_config import get_logger
from peer_client.events import ClientObserver
from peer_client.media import LocalMedia
from peer_client.negotiation import PeerNegotiator, PeerState, default_peer_connection_factory
from schemas.messages import ClientIdPayload, ErrorPayload, Message, MessageType, RELAYED_TYPES, SdpPayload

logger = get_logger(__name__)


class SignalingClient:
    """Joins a room on the relay and keeps a peer connection to every other member.

    Members already in the room offer to newcomers; this client answers offers
    it receives after joining and offers to everyone who joins later.
    """

    def __init__(
        self,
        endpoint: str = SIGNALING_ENDPOINT,
        observer: Optional[ClientObserver] = None,
        media: Optional[LocalMedia] = None,
        ice_servers: Optional[List[str]] = None,
        peer_connection_factory: Optional[Callable] = None,
        connect: Callable = websockets.connect,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.observer = observer or ClientObserver()
        self.media = media or LocalMedia()
        self.client_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.peers: Dict[str, PeerNegotiator] = {}
        self.ws = None
        self._connect = connect
        self._pc_factory = peer_connection_factory or default_peer_connection_factory(ice_servers or ICE_SERVERS)
        self._reader: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def join_room(self, room_id: str) -> None:
        await self.media.acquire()
        url = f"{self.endpoint}{SIGNALING_PATH}"
        logger.info(f"Connecting to signaling server {url}, room '{room_id}'")
        self.ws = await self._connect(url)
        self.room_id = room_id
        await self.send(Message.build(MessageType.JOIN, room_id=room_id))
        self._reader = asyncio.create_task(self._receive_loop())

    async def send(self, message: Message) -> None:
        if self.ws is None or self._closed:
            logger.debug(f"Not sending {message.type.value}, signaling channel is closed")
            return
        await self.ws.send(message.to_json())

    async def _receive_loop(self):
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid message from signaling server: {e}")
                    continue
                await self.handle_message(data)
        except websockets.ConnectionClosed as e:
            logger.info(f"Signaling connection closed: {e}")
        finally:
            logger.debug("Signaling receive loop stopped")

    async def handle_message(self, data: dict) -> None:
        try:
            message = Message.model_validate(data)
            payload = message.payload
            if message.type in RELAYED_TYPES:
                payload = SdpPayload.model_validate(payload).model_dump()
            elif message.type in (MessageType.NOTIFY_CLIENT_ID, MessageType.NEW_CLIENT, MessageType.LEAVE_CLIENT):
                payload = ClientIdPayload.model_validate(payload).model_dump()
            elif message.type == MessageType.ERROR:
                payload = ErrorPayload.model_validate(payload).model_dump()
        except ValidationError as e:
            logger.warning(f"Ignoring malformed message from signaling server: {e}")
            return

        if message.type == MessageType.NOTIFY_CLIENT_ID:
            self.client_id = payload.get("client_id")
            logger.info(f"Assigned client id {self.client_id}")
            self.observer.on_client_id(self.client_id)
        elif message.type == MessageType.NEW_CLIENT:
            peer = self._create_peer(payload["client_id"])
            self._spawn(peer, peer.start_offer())
        elif message.type == MessageType.OFFER:
            peer = self._create_peer(payload["client_id"])
            self._spawn(peer, peer.accept_offer(payload["sdp"]))
        elif message.type == MessageType.ANSWER:
            peer = self.peers.get(payload["client_id"])
            if peer is None:
                logger.warning(f"Answer from {payload['client_id']} without a pending offer")
                return
            self._spawn(peer, peer.accept_answer(payload["sdp"]))
        elif message.type == MessageType.LEAVE_CLIENT:
            await self._handle_leave(payload["client_id"])
        elif message.type == MessageType.ERROR:
            logger.warning(f"Signaling server error: {payload}")
            self.observer.on_error(payload)
        else:
            logger.debug(f"Ignoring {message.type.value} message")

    def _create_peer(self, client_id: str) -> PeerNegotiator:
        existing = self.peers.get(client_id)
        if existing is not None:
            if existing.state not in (PeerState.CLOSED, PeerState.FAILED):
                return existing
            self._spawn(existing, existing.close())
        peer = PeerNegotiator(
            client_id,
            self._pc_factory(),
            self.send,
            observer=self.observer,
            tracks_provider=self.media.tracks_for_peer,
        )
        self.peers[client_id] = peer
        return peer

    def _spawn(self, peer: PeerNegotiator, coro) -> None:
        task = asyncio.create_task(self._run_isolated(peer, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_isolated(self, peer: PeerNegotiator, coro) -> None:
        try:
            await coro
        except Exception as e:
            if peer.state == PeerState.CLOSED:
                logger.debug(f"Negotiation with closed peer {peer.client_id} aborted: {e}")
                return
            if not isinstance(e, NegotiationFailure):
                logger.error(f"Negotiation with {peer.client_id} failed: {e}", exc_info=True)
                e = NegotiationFailure(peer.client_id, str(e))
            peer.fail(e)

    async def _handle_leave(self, client_id: str) -> None:
        peer = self.peers.pop(client_id, None)
        if peer is not None:
            await peer.close()
        logger.info(f"Peer {client_id} left room {self.room_id}")
        self.observer.on_leave(client_id)

    async def wait_idle(self) -> None:
        """Wait for all in-flight negotiations, including ones they start."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def set_audio_enabled(self, enabled: bool) -> None:
        for peer in self.peers.values():
            peer.set_track_enabled("audio", enabled)

    def set_video_enabled(self, enabled: bool) -> None:
        for peer in self.peers.values():
            peer.set_track_enabled("video", enabled)

    async def close(self) -> None:
        """Stop local media, close every peer connection, then the signaling channel."""
        if self._closed:
            return
        self.media.stop()
        for client_id, peer in list(self.peers.items()):
            try:
                await peer.close()
            except Exception as e:
                logger.error(f"Error closing peer connection {client_id}: {e}", exc_info=True)
        self.peers.clear()
        self._closed = True
        if self.ws is not None:
            await self.ws.close()
        for task in list(self._tasks):
            task.cancel()
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        logger.info("Signaling client closed")
