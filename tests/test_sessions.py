import json

import pytest

from schemas.messages import Message, MessageType
from sessions import Session, SessionRegistry, SessionState


class RecordingWebSocket:
    def __init__(self, fail_after=None):
        self.sent = []
        self.fail_after = fail_after

    async def send_text(self, text):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_writer_flushes_queue_in_order_then_stops():
    ws = RecordingWebSocket()
    session = Session(ws)
    session.send(Message.build(MessageType.NOTIFY_CLIENT_ID, client_id="a"))
    session.send(Message.build(MessageType.NEW_CLIENT, client_id="b"))
    session.finish()

    await session.run_writer()

    assert ws.sent == [
        {"type": "notify-client-id", "payload": {"client_id": "a"}},
        {"type": "new-client", "payload": {"client_id": "b"}},
    ]


@pytest.mark.asyncio
async def test_writer_stops_when_socket_fails():
    ws = RecordingWebSocket(fail_after=1)
    session = Session(ws)
    for name in ("a", "b", "c"):
        session.send(Message.build(MessageType.NEW_CLIENT, client_id=name))

    await session.run_writer()

    assert len(ws.sent) == 1


def test_state_transitions():
    session = Session()
    assert session.state == SessionState.CONNECTED
    session.identify("abc")
    assert session.state == SessionState.IDENTIFIED
    session.enter_room("lobby")
    assert (session.state, session.room_id) == (SessionState.IN_ROOM, "lobby")
    session.mark_closed()
    assert session.closed
    assert session.room_id is None


def test_closed_session_drops_outgoing_messages():
    session = Session()
    session.mark_closed()

    assert session.send(Message.build(MessageType.NEW_CLIENT, client_id="x")) is False
    assert session.pending() == []


def test_registry():
    registry = SessionRegistry()
    session = Session()
    session.identify("abc")

    registry.register(session)
    assert registry.get("abc") is session
    assert len(registry) == 1

    registry.unregister("abc")
    registry.unregister("abc")
    assert registry.get("abc") is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_session_stops_queueing_after_writer_fails():
    ws = RecordingWebSocket(fail_after=0)
    session = Session(ws)
    session.send(Message.build(MessageType.NEW_CLIENT, client_id="a"))
    session.send(Message.build(MessageType.NEW_CLIENT, client_id="b"))

    await session.run_writer()

    assert ws.sent == []
    assert not session.writable
    assert session.outbox.empty()
    assert session.send(Message.build(MessageType.NEW_CLIENT, client_id="c")) is False
    assert session.outbox.empty()
