"""Recoverable errors raised by the room and signaling services."""
from __future__ import annotations

import math


class SignalingError(Exception):
    """Base error carrying a stable ``code`` tag and an HTTP status."""

    code = "signaling_error"
    status_code = 400
    default_message = "Signaling request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(SignalingError):
    code = "room_not_found"
    status_code = 404
    default_message = "Room not found"


class RoomInactive(SignalingError):
    code = "room_inactive"
    status_code = 410
    default_message = "Room is not active"


class RoomFull(SignalingError):
    code = "room_full"
    status_code = 409
    default_message = "Room is full"


class InvalidPassword(SignalingError):
    code = "invalid_password"
    status_code = 403
    default_message = "Invalid room password"


class DuplicateParticipant(SignalingError):
    code = "duplicate_participant"
    status_code = 409
    default_message = "Participant already in room"


class NotInRoom(SignalingError):
    code = "not_in_room"
    status_code = 409
    default_message = "Session is not in a room"


class PermissionDenied(SignalingError):
    code = "permission_denied"
    status_code = 403
    default_message = "Only the host can do that"


class ParticipantNotFound(SignalingError):
    code = "participant_not_found"
    status_code = 404
    default_message = "Participant not found in room"


class NegotiationFailed(SignalingError):
    code = "negotiation_failed"
    status_code = 409
    default_message = "Failed to process session description"


class InvalidEvent(SignalingError):
    code = "invalid_event"
    status_code = 422
    default_message = "Malformed event payload"


class RateLimited(SignalingError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, *, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = max(0, math.ceil(retry_after))
