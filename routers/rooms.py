from typing import List

from fastapi import APIRouter, HTTPException, Request

from errors import NotFound
from logging_config import get_logger
from routers.signaling import relay
from schemas.rooms import RoomDetailsResponse, RoomSummary

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=List[RoomSummary])
async def list_rooms(request: Request):
    rooms = relay.store.list_rooms()
    logger.debug(f"Listing {len(rooms)} rooms for {request.client.host if request.client else 'unknown'}")
    return [
        RoomSummary(room_id=room.id, client_count=len(room.clients), created_at=room.created_at)
        for room in sorted(rooms, key=lambda r: r.id)
    ]


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get the current members of a room.

    Returns:
    - room_id: Room identifier
    - created_at: Room creation timestamp
    - client_ids: Ids of the connected clients
    - client_count: Number of connected clients
    """
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room details request for {room_id} from {client_host}")

    try:
        room = relay.store.get(room_id)
    except NotFound:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room.id,
        created_at=room.created_at,
        client_ids=room.client_ids(),
        client_count=len(room.clients),
    )
