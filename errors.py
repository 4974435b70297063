"""
Signaling errors

Error codes and exceptions shared by the room store, the router and the
client-side negotiation driver. Every error carries a machine-readable code
that is sent back to clients inside an ``error`` message.
"""

from enum import Enum
from typing import Optional

from schemas.messages import ErrorPayload


class ErrorCode(str, Enum):
    """Codes carried in the payload of ``error`` messages."""

    NOT_FOUND = "not_found"
    ALREADY_MEMBER = "already_member"
    STALE_TARGET = "stale_target"
    NOT_IN_ROOM = "not_in_room"
    INVALID_MESSAGE = "invalid_message"
    NEGOTIATION_FAILED = "negotiation_failed"
    STORE_UNAVAILABLE = "store_unavailable"


class SignalingError(Exception):
    """Base exception for signaling errors."""

    code: ErrorCode = ErrorCode.INVALID_MESSAGE

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict:
        return ErrorPayload(code=self.code.value, message=self.message).model_dump()


class NotFound(SignalingError):
    """Room or client id is absent from the store."""

    code = ErrorCode.NOT_FOUND


class AlreadyMember(SignalingError):
    """Client already belongs to a room."""

    code = ErrorCode.ALREADY_MEMBER


class StaleTarget(SignalingError):
    """Offer or answer addressed to a client with no live session."""

    code = ErrorCode.STALE_TARGET


class NotInRoom(SignalingError):
    """Session tried to relay before joining a room."""

    code = ErrorCode.NOT_IN_ROOM


class ProtocolError(SignalingError):
    """Message could not be decoded or has an unknown type."""

    code = ErrorCode.INVALID_MESSAGE


class StoreUnavailable(SignalingError):
    """Room store could not complete an update, e.g. a room lock timed out."""

    code = ErrorCode.STORE_UNAVAILABLE


class NegotiationFailure(SignalingError):
    """Local peer connection failure, scoped to a single remote peer."""

    code = ErrorCode.NEGOTIATION_FAILED

    def __init__(self, client_id: str, message: str):
        super().__init__(f"negotiation with {client_id} failed: {message}")
        self.client_id = client_id
