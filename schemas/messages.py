"""
Signaling message schemas

Pydantic models for the JSON envelope ``{"type": ..., "payload": {...}}``
exchanged over the signaling WebSocket. SDP strings are carried opaquely.
"""

import json
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Signaling message kinds."""

    JOIN = "join"
    LEAVE = "leave"
    NOTIFY_CLIENT_ID = "notify-client-id"
    NEW_CLIENT = "new-client"
    LEAVE_CLIENT = "leave-client"
    OFFER = "offer"
    ANSWER = "answer"
    ERROR = "error"


RELAYED_TYPES = (MessageType.OFFER, MessageType.ANSWER)


class Message(BaseModel):
    """Envelope for every signaling message."""

    type: MessageType
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"type": self.type.value, "payload": self.payload})

    @classmethod
    def build(cls, message_type: MessageType, **payload) -> "Message":
        return cls(type=message_type, payload=payload)


class JoinPayload(BaseModel):
    room_id: str = Field(..., min_length=1, description="Room to join, created if absent")


class ClientIdPayload(BaseModel):
    client_id: str = Field(..., min_length=1)


class SdpPayload(BaseModel):
    """Offer/answer payload. ``client_id`` is the target on the way in and the sender on the way out."""

    client_id: str = Field(..., min_length=1)
    sdp: str


class ErrorPayload(BaseModel):
    code: str
    message: str
