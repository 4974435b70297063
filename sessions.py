import asyncio
import threading
from enum import Enum
from typing import Dict, List, Optional

from logging_config import get_logger
from schemas.messages import Message

logger = get_logger(__name__)


class SessionState(str, Enum):
    CONNECTED = "connected"
    IDENTIFIED = "identified"
    IN_ROOM = "in_room"
    CLOSED = "closed"


_CLOSE = object()


class Session:
    """One signaling connection.

    Outgoing messages are queued with ``send`` and written to the socket by
    ``run_writer``, so the router can fan out without awaiting.
    """

    def __init__(self, websocket=None):
        self.websocket = websocket
        self.client_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.state = SessionState.CONNECTED
        self.outbox: asyncio.Queue = asyncio.Queue()
        # cleared once the writer stops, nothing drains the outbox after that
        self.writable = True

    def __repr__(self):
        return f"<Session client_id={self.client_id} room_id={self.room_id} state={self.state.value}>"

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def identify(self, client_id: str) -> None:
        self.client_id = client_id
        self.state = SessionState.IDENTIFIED

    def enter_room(self, room_id: str) -> None:
        self.room_id = room_id
        self.state = SessionState.IN_ROOM

    def mark_closed(self) -> None:
        self.room_id = None
        self.state = SessionState.CLOSED

    def send(self, message: Message) -> bool:
        if self.closed or not self.writable:
            logger.debug(f"Dropping {message.type.value} for closed session {self.client_id}")
            return False
        self.outbox.put_nowait(message)
        return True

    def pending(self) -> List[Message]:
        """Drain queued messages without writing them. Used when no socket is attached."""
        messages = []
        while not self.outbox.empty():
            item = self.outbox.get_nowait()
            if item is not _CLOSE:
                messages.append(item)
        return messages

    def finish(self) -> None:
        """Stop the writer once everything queued before this call has been sent."""
        self.outbox.put_nowait(_CLOSE)

    async def run_writer(self):
        sent = 0
        while True:
            item = await self.outbox.get()
            if item is _CLOSE:
                break
            try:
                await self.websocket.send_text(item.to_json())
                sent += 1
            except Exception as e:
                logger.warning(f"Error sending {item.type.value} to connection {self.client_id}: {e}")
                break
        self.writable = False
        dropped = len(self.pending())
        if dropped:
            logger.debug(f"Discarded {dropped} unsent messages for connection {self.client_id}")
        logger.debug(f"Writer for connection {self.client_id} stopped after {sent} messages")


class SessionRegistry:
    """Index of live sessions by client id."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def register(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.client_id] = session

    def unregister(self, client_id: str) -> None:
        with self._lock:
            self._sessions.pop(client_id, None)

    def get(self, client_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(client_id)
