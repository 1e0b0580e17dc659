"""Data contracts for WebRTC peer-connection endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class IceServer(BaseModel):
    urls: str = Field(..., description="STUN/TURN URL")


class IceServersResponse(BaseModel):
    ice_servers: list[IceServer]


class PeerLinkSummary(BaseModel):
    connection_id: str
    status: str


class PeerUserSummary(BaseModel):
    session_id: str | None = None
    is_initiator: bool = False
    peer_count: int = Field(..., ge=0)
    media_state: dict[str, bool]
    peers: dict[str, PeerLinkSummary]


class RoomConnectionsResponse(BaseModel):
    room_id: str
    user_count: int
    users: dict[str, PeerUserSummary]
    total_connections: int


class RoomConnectionCount(BaseModel):
    user_count: int
    connection_count: int


class PeerStatsResponse(BaseModel):
    total_rooms: int
    total_users: int
    total_connections: int
    pending_offers: int
    rooms: dict[str, RoomConnectionCount]
