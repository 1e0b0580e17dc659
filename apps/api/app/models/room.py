"""Room and participant entities."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..services.errors import DuplicateParticipant, RoomFull


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"
    SCREEN = "screen"


class Role(str, enum.Enum):
    HOST = "host"
    PARTICIPANT = "participant"


@dataclass(slots=True)
class MediaState:
    """Media flags for one participant; shared by reference between stores."""

    audio: bool = True
    video: bool = True
    screen: bool = False

    def set(self, kind: MediaKind, enabled: bool) -> None:
        setattr(self, MediaKind(kind).value, bool(enabled))

    def as_dict(self) -> dict[str, bool]:
        return {"audio": self.audio, "video": self.video, "screen": self.screen}


@dataclass(slots=True)
class RoomSettings:
    allow_screen_share: bool = True
    allow_chat: bool = True
    require_password: bool = False
    password: str | None = None
    recording_enabled: bool = False

    def public(self) -> dict[str, Any]:
        """Settings as exposed to clients; the password never leaves the server."""

        return {
            "allow_screen_share": self.allow_screen_share,
            "allow_chat": self.allow_chat,
            "require_password": self.require_password,
            "recording_enabled": self.recording_enabled,
        }


@dataclass(slots=True)
class Participant:
    participant_id: str
    name: str
    session_id: str | None
    media: MediaState
    role: Role = Role.PARTICIPANT
    hand_raised: bool = False
    joined_at: datetime = field(default_factory=utcnow)

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    def info(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "name": self.name,
            "role": self.role.value,
            "media": self.media.as_dict(),
            "hand_raised": self.hand_raised,
            "joined_at": self.joined_at.isoformat(),
        }


@dataclass
class Room:
    """A multi-party session; participant insertion order decides host succession."""

    room_id: str
    capacity: int = 10
    created_by: str | None = None
    settings: RoomSettings = field(default_factory=RoomSettings)
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    participants: dict[str, Participant] = field(default_factory=dict)

    def add_participant(
        self,
        participant_id: str,
        media: MediaState,
        *,
        name: str | None = None,
        session_id: str | None = None,
    ) -> Participant:
        """Add a participant, making the first one into an empty room the host."""

        if len(self.participants) >= self.capacity:
            raise RoomFull(f"Room is full. Maximum {self.capacity} participants allowed.")
        if participant_id in self.participants:
            raise DuplicateParticipant()

        participant = Participant(
            participant_id=participant_id,
            name=name or f"User {participant_id[:8]}",
            session_id=session_id,
            media=media,
            role=Role.HOST if not self.participants else Role.PARTICIPANT,
        )
        self.participants[participant_id] = participant
        return participant

    def remove_participant(self, participant_id: str) -> Participant | None:
        """Remove a participant and hand the host role to the earliest remaining joiner."""

        participant = self.participants.pop(participant_id, None)
        if participant is None:
            return None
        if participant.is_host and self.participants:
            successor = next(iter(self.participants.values()))
            successor.role = Role.HOST
        return participant

    def validate_password(self, password: str | None) -> bool:
        if not self.settings.require_password:
            return True
        return self.settings.password == password

    def is_empty(self) -> bool:
        return not self.participants

    def info(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "user_count": len(self.participants),
            "capacity": self.capacity,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
            "settings": self.settings.public(),
            "participants": [participant.info() for participant in self.participants.values()],
        }
