"""Signaling event vocabulary exchanged over the session transport."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class JoinEvent(_Inbound):
    type: Literal["join"]
    room_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    password: str | None = Field(default=None, max_length=50)


class LeaveRoomEvent(_Inbound):
    type: Literal["leave-room"]


class OfferEvent(_Inbound):
    type: Literal["offer"]
    target: str = Field(..., min_length=1)
    offer: dict[str, Any]


class AnswerEvent(_Inbound):
    type: Literal["answer"]
    target: str = Field(..., min_length=1)
    answer: dict[str, Any]


class IceCandidateEvent(_Inbound):
    type: Literal["ice-candidate"]
    target: str = Field(..., min_length=1)
    candidate: dict[str, Any] | None = Field(..., description="null signals end of candidates")


class ToggleMediaEvent(_Inbound):
    type: Literal["toggle-audio", "toggle-video", "toggle-screen-share"]
    enabled: bool


class StartScreenShareEvent(_Inbound):
    type: Literal["start-screen-share"]
    stream_id: str | None = None


class StopScreenShareEvent(_Inbound):
    type: Literal["stop-screen-share"]


class StartRecordingEvent(_Inbound):
    type: Literal["start-recording"]


class StopRecordingEvent(_Inbound):
    type: Literal["stop-recording"]


class MuteParticipantEvent(_Inbound):
    type: Literal["mute-participant"]
    target: str = Field(..., min_length=1)


class RemoveParticipantEvent(_Inbound):
    type: Literal["remove-participant"]
    target: str = Field(..., min_length=1)


class RaiseHandEvent(_Inbound):
    type: Literal["raise-hand"]
    raised: bool = True


class SendMessageEvent(_Inbound):
    type: Literal["send-message"]
    message: str = Field(..., min_length=1, max_length=5000)
    kind: Literal["text", "emoji"] = "text"


class ShareFileEvent(_Inbound):
    type: Literal["share-file"]
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(..., ge=0)
    file_type: str = Field(default="application/octet-stream")
    file_url: str = Field(..., min_length=1)


class ConnectionQualityEvent(_Inbound):
    type: Literal["connection-quality"]
    quality: str
    stats: dict[str, Any] = Field(default_factory=dict)


class EndRoomEvent(_Inbound):
    type: Literal["end-room"]


InboundEvent = Annotated[
    Union[
        JoinEvent,
        LeaveRoomEvent,
        OfferEvent,
        AnswerEvent,
        IceCandidateEvent,
        ToggleMediaEvent,
        StartScreenShareEvent,
        StopScreenShareEvent,
        StartRecordingEvent,
        StopRecordingEvent,
        MuteParticipantEvent,
        RemoveParticipantEvent,
        RaiseHandEvent,
        SendMessageEvent,
        ShareFileEvent,
        ConnectionQualityEvent,
        EndRoomEvent,
    ],
    Field(discriminator="type"),
]

inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


class OutboundEvent(BaseModel):
    """Base for server-emitted events; ``dump`` yields the JSON frame body."""

    type: str

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SessionReady(OutboundEvent):
    type: Literal["session-ready"] = "session-ready"
    session_id: str


class RoomJoined(OutboundEvent):
    type: Literal["room-joined"] = "room-joined"
    room_id: str
    participant_id: str
    participant: dict[str, Any]
    room: dict[str, Any]
    existing_participants: list[dict[str, Any]]
    ice_servers: list[dict[str, Any]]


class ParticipantJoined(OutboundEvent):
    type: Literal["participant-joined"] = "participant-joined"
    participant_id: str
    participant: dict[str, Any]
    room: dict[str, Any]


class LeftRoom(OutboundEvent):
    type: Literal["left-room"] = "left-room"
    room_id: str


class ParticipantDisconnected(OutboundEvent):
    type: Literal["participant-disconnected"] = "participant-disconnected"
    participant_id: str
    participant: dict[str, Any]
    room: dict[str, Any] | None = None


class OfferRelay(OutboundEvent):
    type: Literal["offer"] = "offer"
    sender: str
    target: str
    connection_id: str
    offer: dict[str, Any]


class AnswerRelay(OutboundEvent):
    type: Literal["answer"] = "answer"
    sender: str
    target: str
    connection_id: str
    answer: dict[str, Any]


class IceCandidateRelay(OutboundEvent):
    type: Literal["ice-candidate"] = "ice-candidate"
    sender: str
    target: str
    candidate: dict[str, Any] | None = None


class MediaChanged(OutboundEvent):
    type: Literal["media-changed"] = "media-changed"
    participant_id: str
    kind: str
    enabled: bool
    media_state: dict[str, bool]


class ScreenShareStarted(OutboundEvent):
    type: Literal["screen-share-started"] = "screen-share-started"
    participant_id: str
    name: str
    stream_id: str | None = None
    media_state: dict[str, bool]


class ScreenShareStopped(OutboundEvent):
    type: Literal["screen-share-stopped"] = "screen-share-stopped"
    participant_id: str
    name: str
    media_state: dict[str, bool]


class RecordingStarted(OutboundEvent):
    type: Literal["recording-started"] = "recording-started"
    started_by: str
    name: str
    timestamp: datetime


class RecordingStopped(OutboundEvent):
    type: Literal["recording-stopped"] = "recording-stopped"
    stopped_by: str
    name: str
    timestamp: datetime


class ParticipantMuted(OutboundEvent):
    type: Literal["participant-muted"] = "participant-muted"
    target_id: str
    target_name: str
    muted_by: str
    muted_by_name: str


class RemovedFromRoom(OutboundEvent):
    type: Literal["removed-from-room"] = "removed-from-room"
    removed_by: str
    removed_by_name: str
    reason: str = "Removed by host"


class HandRaised(OutboundEvent):
    type: Literal["hand-raised"] = "hand-raised"
    participant_id: str
    name: str
    raised: bool
    timestamp: datetime


class NewMessage(OutboundEvent):
    type: Literal["new-message"] = "new-message"
    id: str
    participant_id: str
    name: str
    message: str
    kind: str
    timestamp: datetime


class NewFile(OutboundEvent):
    type: Literal["new-file"] = "new-file"
    id: str
    participant_id: str
    name: str
    file_name: str
    file_size: int
    file_type: str
    file_url: str
    timestamp: datetime


class ConnectionQuality(OutboundEvent):
    type: Literal["connection-quality"] = "connection-quality"
    participant_id: str
    quality: str
    stats: dict[str, Any] = Field(default_factory=dict)


class RoomClosed(OutboundEvent):
    type: Literal["room-closed"] = "room-closed"
    room_id: str
    reason: str = "Room has been closed"


class ErrorEvent(OutboundEvent):
    type: Literal["error"] = "error"
    code: str
    message: str
    event: str | None = None
