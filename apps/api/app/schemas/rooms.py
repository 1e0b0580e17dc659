"""Schemas for the room administration API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class RoomSettingsRequest(BaseModel):
    capacity: int | None = Field(default=None, ge=1, description="Clamped to the server ceiling")
    require_password: bool = False
    password: str | None = Field(default=None, max_length=50)
    allow_screen_share: bool = True
    allow_chat: bool = True

    @model_validator(mode="after")
    def _password_when_required(self) -> "RoomSettingsRequest":
        if self.require_password and not self.password:
            raise ValueError("password is required when require_password is set")
        return self


class CreateRoomRequest(BaseModel):
    created_by: str | None = Field(default=None, max_length=100)
    settings: RoomSettingsRequest = Field(default_factory=RoomSettingsRequest)


class ParticipantSummary(BaseModel):
    participant_id: str
    name: str
    role: str
    media: dict[str, bool]
    hand_raised: bool
    joined_at: datetime


class RoomSettingsSummary(BaseModel):
    allow_screen_share: bool
    allow_chat: bool
    require_password: bool
    recording_enabled: bool


class RoomSummary(BaseModel):
    room_id: str
    user_count: int
    capacity: int
    is_active: bool
    created_at: datetime
    created_by: str | None = None
    settings: RoomSettingsSummary
    participants: list[ParticipantSummary] = Field(default_factory=list)


class CreateRoomResponse(BaseModel):
    room_id: str
    message: str = "Room created successfully"
    room: RoomSummary


class RoomListResponse(BaseModel):
    items: list[RoomSummary]


class RoomStatsItem(BaseModel):
    room_id: str
    user_count: int
    created_at: datetime


class RoomStatsResponse(BaseModel):
    total_rooms: int
    total_users: int
    active_sessions: int
    rooms: list[RoomStatsItem]


def room_summary(info: dict[str, Any]) -> RoomSummary:
    return RoomSummary.model_validate(info)
