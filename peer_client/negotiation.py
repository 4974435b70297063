"""
Per-peer negotiation

One PeerNegotiator per remote client id. It owns the RTCPeerConnection for
that peer and drives the offer/answer exchange. ICE is not trickled: the
local description is sent only once candidate gathering has completed.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from errors import NegotiationFailure
from logging_config import get_logger
from peer_client.events import ClientObserver
from schemas.messages import Message, MessageType

logger = get_logger(__name__)


class PeerState(str, Enum):
    IDLE = "idle"
    LOCAL_OFFER_PENDING = "local_offer_pending"
    LOCAL_OFFER_SET = "local_offer_set"
    REMOTE_OFFER_RECEIVED = "remote_offer_received"
    LOCAL_ANSWER_SET = "local_answer_set"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"


def default_peer_connection_factory(ice_servers: List[str]):
    def factory():
        return RTCPeerConnection(
            configuration=RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        )

    return factory


async def wait_for_ice_gathering(pc) -> None:
    """Wait until the peer connection has finished gathering candidates or was closed."""
    done = asyncio.get_running_loop().create_future()

    def on_state():
        if done.done():
            return
        if pc.iceGatheringState == "complete" or pc.connectionState == "closed":
            done.set_result(None)

    pc.on("icegatheringstatechange", on_state)
    pc.on("connectionstatechange", on_state)
    try:
        on_state()
        await done
    finally:
        pc.remove_listener("icegatheringstatechange", on_state)
        pc.remove_listener("connectionstatechange", on_state)


class PeerNegotiator:
    def __init__(
        self,
        client_id: str,
        pc,
        send: Callable[[Message], Awaitable[None]],
        observer: Optional[ClientObserver] = None,
        tracks_provider: Optional[Callable[[], Awaitable[List]]] = None,
    ):
        self.client_id = client_id
        self.pc = pc
        self.state = PeerState.IDLE
        self.lock = asyncio.Lock()
        self._send = send
        self._observer = observer or ClientObserver()
        self._tracks_provider = tracks_provider
        self._senders: Dict[str, object] = {}
        self._tracks: Dict[str, object] = {}

        pc.on("track", self._on_track)
        pc.on("connectionstatechange", self._on_connection_state)

    def __repr__(self):
        return f"<PeerNegotiator {self.client_id} {self.state.value}>"

    def _set_state(self, state: PeerState) -> None:
        if self.state == state:
            return
        logger.debug(f"Peer {self.client_id}: {self.state.value} -> {state.value}")
        self.state = state
        self._observer.on_peer_state(self.client_id, state)

    def _on_track(self, track):
        logger.info(f"Received {track.kind} track from {self.client_id}")
        self._observer.on_track(self.client_id, track)

    def _on_connection_state(self):
        if self.pc.connectionState == "failed" and self.state not in (PeerState.CLOSED, PeerState.FAILED):
            self.fail(NegotiationFailure(self.client_id, "peer connection failed"))

    def fail(self, error: NegotiationFailure) -> None:
        logger.warning(error.message)
        self._set_state(PeerState.FAILED)
        self._observer.on_negotiation_failed(self.client_id, error)

    async def _attach_local_tracks(self) -> None:
        if self._senders or self._tracks_provider is None:
            return
        for track in await self._tracks_provider():
            self._tracks[track.kind] = track
            self._senders[track.kind] = self.pc.addTrack(track)

    def set_track_enabled(self, kind: str, enabled: bool) -> None:
        sender = self._senders.get(kind)
        if sender is None:
            return
        sender.replaceTrack(self._tracks[kind] if enabled else None)

    async def _send_local_description(self, message_type: MessageType) -> None:
        await wait_for_ice_gathering(self.pc)
        if self.state == PeerState.CLOSED:
            return
        await self._send(Message.build(message_type, client_id=self.client_id, sdp=self.pc.localDescription.sdp))

    async def start_offer(self) -> None:
        """Offer to a newcomer in the room."""
        async with self.lock:
            self._set_state(PeerState.LOCAL_OFFER_PENDING)
            await self._attach_local_tracks()
            offer = await self.pc.createOffer()
            await self.pc.setLocalDescription(offer)
            self._set_state(PeerState.LOCAL_OFFER_SET)
            await self._send_local_description(MessageType.OFFER)
            logger.info(f"Sent offer to {self.client_id}")

    async def accept_offer(self, sdp: str) -> None:
        """Answer an offer from a member that was already in the room."""
        async with self.lock:
            await self._attach_local_tracks()
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
            self._set_state(PeerState.REMOTE_OFFER_RECEIVED)
            answer = await self.pc.createAnswer()
            await self.pc.setLocalDescription(answer)
            self._set_state(PeerState.LOCAL_ANSWER_SET)
            await self._send_local_description(MessageType.ANSWER)
            if self.state == PeerState.LOCAL_ANSWER_SET:
                logger.info(f"Sent answer to {self.client_id}")
                self._set_state(PeerState.CONNECTED)

    async def accept_answer(self, sdp: str) -> None:
        async with self.lock:
            if self.state != PeerState.LOCAL_OFFER_SET:
                raise NegotiationFailure(self.client_id, f"unexpected answer in state {self.state.value}")
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))
            self._set_state(PeerState.CONNECTED)
            logger.info(f"Negotiation with {self.client_id} complete")

    async def close(self) -> None:
        # not serialised with the lock, a pending gathering wait must not block teardown
        if self.state == PeerState.CLOSED:
            return
        self._set_state(PeerState.CLOSED)
        await self.pc.close()
