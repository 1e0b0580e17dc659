"""Expose room domain models."""
from .room import MediaKind, MediaState, Participant, Role, Room, RoomSettings

__all__ = [
    "MediaKind",
    "MediaState",
    "Participant",
    "Role",
    "Room",
    "RoomSettings",
]
