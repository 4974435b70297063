"""Fakes and helpers shared by the tests: WebRTC stand-ins and an in-process signaling socket."""

import asyncio
import itertools
import json
from collections import defaultdict

from aiortc import RTCSessionDescription

from schemas.messages import Message
from sessions import Session


def raw(message_type, **payload):
    return json.dumps({"type": message_type, "payload": payload})


def connect_session(router):
    session = Session()
    router.connect(session)
    session.pending()
    return session


def join(router, session, room_id):
    router.dispatch(session, raw("join", room_id=room_id))


class FakeSender:
    def __init__(self, track):
        self.track = track

    def replaceTrack(self, track):
        self.track = track


class FakePeerConnection:
    """Stand-in for aiortc's RTCPeerConnection. Gathering completes right after setLocalDescription."""

    _ids = itertools.count(1)

    def __init__(self, fail_remote=False):
        self.name = f"pc{next(self._ids)}"
        self.handlers = defaultdict(list)
        self.iceGatheringState = "new"
        self.connectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.senders = []
        self.calls = []
        self.fail_remote = fail_remote
        self.closed = False

    def on(self, event, f):
        self.handlers[event].append(f)
        return f

    def remove_listener(self, event, f):
        self.handlers[event].remove(f)

    def emit(self, event, *args):
        for handler in list(self.handlers[event]):
            handler(*args)

    def addTrack(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    async def createOffer(self):
        self.calls.append("createOffer")
        return RTCSessionDescription(sdp=f"offer-sdp-{self.name}", type="offer")

    async def createAnswer(self):
        self.calls.append("createAnswer")
        return RTCSessionDescription(sdp=f"answer-sdp-{self.name}", type="answer")

    async def setLocalDescription(self, description):
        self.calls.append(f"setLocalDescription:{description.type}")
        self.localDescription = description
        self.iceGatheringState = "gathering"
        asyncio.get_running_loop().call_soon(self._complete_gathering)

    def _complete_gathering(self):
        self.iceGatheringState = "complete"
        self.emit("icegatheringstatechange")

    async def setRemoteDescription(self, description):
        self.calls.append(f"setRemoteDescription:{description.type}")
        if self.fail_remote:
            raise ValueError("malformed session description")
        self.remoteDescription = description

    def set_connection_state(self, state):
        self.connectionState = state
        self.emit("connectionstatechange")

    async def close(self):
        self.closed = True
        self.set_connection_state("closed")


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeMedia:
    def __init__(self):
        self.tracks = [FakeTrack("audio"), FakeTrack("video")]
        self.acquire_count = 0

    async def acquire(self):
        self.acquire_count += 1
        return self.tracks

    async def tracks_for_peer(self):
        return list(self.tracks)

    def stop(self):
        for track in self.tracks:
            track.stop()


class RecordingObserver:
    def __init__(self):
        self.events = []

    def on_client_id(self, client_id):
        self.events.append(("client_id", client_id))

    def on_track(self, client_id, track):
        self.events.append(("track", client_id, track))

    def on_leave(self, client_id):
        self.events.append(("leave", client_id))

    def on_peer_state(self, client_id, state):
        self.events.append(("state", client_id, state))

    def on_negotiation_failed(self, client_id, error):
        self.events.append(("failed", client_id, error))

    def on_error(self, payload):
        self.events.append(("error", payload))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


class LoopbackSocket:
    """Connects a SignalingClient straight to a SignalingRouter, in place of a WebSocket."""

    def __init__(self, router):
        self.router = router
        self.session = Session()
        self.sent = []
        router.connect(self.session)

    async def send(self, text):
        self.sent.append(text)
        self.router.dispatch(self.session, text)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.session.outbox.get()
        if not isinstance(item, Message):
            raise StopAsyncIteration
        return item.to_json()

    async def close(self):
        self.router.disconnect(self.session)
        self.session.finish()


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)
