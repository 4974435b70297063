import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend import room_store
from constants import SIGNALING_PATH
from logging_config import get_logger
from sessions import Session
from signaling import SignalingRouter

logger = get_logger(__name__)

signaling_router = APIRouter(tags=["signaling"])

# One router per process. Sessions are indexed locally; the room store may be shared.
relay = SignalingRouter(room_store)


@signaling_router.websocket(SIGNALING_PATH)
async def websocket_endpoint(websocket: WebSocket):
    """Signaling WebSocket.

    The server assigns a client id on accept and pushes ``notify-client-id``.
    The client then sends ``join`` and relays ``offer``/``answer`` messages.
    Closing the socket is treated as leaving the room.
    """
    client_host = websocket.client.host if websocket.client else "unknown"
    logger.info(f"WebSocket connection attempt from {client_host}")
    await websocket.accept()

    session = Session(websocket)
    writer = asyncio.create_task(session.run_writer())
    relay.connect(session)

    message_count = 0
    try:
        while not session.closed:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {session.client_id}")
                break
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {session.client_id}")
            relay.dispatch(session, data)
    except Exception as e:
        logger.error(f"WebSocket error for connection {session.client_id}: {e}", exc_info=True)
    finally:
        try:
            relay.disconnect(session)
        except Exception as e:
            logger.error(f"Cleanup of connection {session.client_id} failed: {e}", exc_info=True)
            session.mark_closed()
            relay.registry.unregister(session.client_id)
        session.finish()
        try:
            await writer
        except Exception as e:
            logger.error(f"Writer for connection {session.client_id} failed: {e}", exc_info=True)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
