"""In-memory room directory and participant lifecycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from ..models.room import MediaKind, Participant, Room, RoomSettings
from .errors import InvalidPassword, RoomInactive, RoomNotFound
from .media import MediaStateTable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ParticipantInfo:
    """Caller-supplied attributes for a joining participant."""

    name: str | None = None
    session_id: str | None = None


class ConnectionRegistry:
    """Own rooms and their participants; a participant is in at most one room."""

    def __init__(
        self,
        media: MediaStateTable | None = None,
        *,
        default_capacity: int = 10,
        max_capacity: int = 50,
    ) -> None:
        self._media = media if media is not None else MediaStateTable()
        self._default_capacity = default_capacity
        self._max_capacity = max_capacity
        self._rooms: Dict[str, Room] = {}
        self._participant_rooms: Dict[str, str] = {}

    @property
    def media(self) -> MediaStateTable:
        return self._media

    def create_room(self, created_by: str | None = None, settings: dict[str, Any] | None = None) -> Room:
        """Create a room, clamping the requested capacity to the configured ceiling."""

        settings = settings or {}
        requested = settings.get("capacity") or self._default_capacity
        capacity = max(1, min(int(requested), self._max_capacity))

        room_settings = RoomSettings(
            allow_screen_share=settings.get("allow_screen_share", True),
            allow_chat=settings.get("allow_chat", True),
        )
        if settings.get("require_password"):
            room_settings.require_password = True
            room_settings.password = settings.get("password")

        room = Room(room_id=str(uuid4()), capacity=capacity, created_by=created_by, settings=room_settings)
        self._rooms[room.room_id] = room
        logger.info("Room created: %s by %s (capacity=%s)", room.room_id, created_by or "anonymous", capacity)
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def list_rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def get_participant_room(self, participant_id: str) -> Optional[Room]:
        room_id = self._participant_rooms.get(participant_id)
        return self._rooms.get(room_id) if room_id else None

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        room = self.get_participant_room(participant_id)
        return room.participants.get(participant_id) if room else None

    def join_room(
        self,
        room_id: str,
        participant_id: str,
        info: ParticipantInfo | None = None,
        password: str | None = None,
    ) -> Tuple[Room, Participant]:
        """Add a participant to a room, leaving any room they are already in."""

        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound()
        if not room.is_active:
            raise RoomInactive()
        if not room.validate_password(password):
            raise InvalidPassword()

        self.leave_room(participant_id)
        # Re-joining the same room as its last member must not lose the room.
        self._rooms.setdefault(room_id, room)

        info = info or ParticipantInfo()
        media = self._media.ensure(participant_id)
        try:
            participant = room.add_participant(
                participant_id, media, name=info.name, session_id=info.session_id
            )
        except Exception:
            self._media.discard(participant_id)
            raise
        self._participant_rooms[participant_id] = room_id

        logger.info("Participant %s joined room %s", participant_id, room_id)
        return room, participant

    def leave_room(self, participant_id: str) -> Optional[Tuple[Room, Participant]]:
        """Remove a participant; an emptied room is deleted immediately."""

        room_id = self._participant_rooms.pop(participant_id, None)
        if room_id is None:
            return None
        room = self._rooms.get(room_id)
        if room is None:
            return None

        participant = room.remove_participant(participant_id)
        self._media.discard(participant_id)
        if participant is None:
            return None
        logger.info("Participant %s left room %s", participant_id, room_id)

        if room.is_empty():
            self._rooms.pop(room_id, None)
            logger.info("Room %s deleted (empty)", room_id)
        return room, participant

    def update_participant_media(self, participant_id: str, kind: MediaKind, enabled: bool) -> Optional[Participant]:
        participant = self.get_participant(participant_id)
        if participant is None:
            return None
        participant.media.set(kind, enabled)
        return participant

    def set_hand_raised(self, participant_id: str, raised: bool) -> Optional[Participant]:
        participant = self.get_participant(participant_id)
        if participant is None:
            return None
        participant.hand_raised = bool(raised)
        return participant

    def deactivate_room(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        room.is_active = False
        logger.info("Room %s deactivated", room_id)
        return room

    def sweep_empty_rooms(self) -> int:
        """Drop rooms left empty by a partial teardown."""

        empty = [room_id for room_id, room in self._rooms.items() if room.is_empty()]
        for room_id in empty:
            self._rooms.pop(room_id, None)
            logger.info("Cleaned up empty room: %s", room_id)
        if empty:
            logger.info("Cleaned up %d empty rooms", len(empty))
        return len(empty)

    def stats(self) -> dict[str, Any]:
        return {
            "total_rooms": len(self._rooms),
            "total_users": len(self._participant_rooms),
            "rooms": [
                {
                    "room_id": room.room_id,
                    "user_count": len(room.participants),
                    "created_at": room.created_at.isoformat(),
                }
                for room in self._rooms.values()
            ],
        }
