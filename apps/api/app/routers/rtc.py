"""Peer-connection inspection and the signaling WebSocket."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..dependencies import client_address, get_dispatcher, get_tracker, limit_api
from ..schemas.rtc import IceServersResponse, PeerStatsResponse, RoomConnectionsResponse
from ..services.errors import RoomNotFound
from ..services.peers import PeerConnectionTracker
from ..services.signaling import SignalingDispatcher, SignalingSession

logger = logging.getLogger(__name__)

router = APIRouter()

REMOVED_CLOSE_CODE = 4001


@router.get("/ice-servers", response_model=IceServersResponse, dependencies=[Depends(limit_api)])
async def get_ice_servers(tracker: PeerConnectionTracker = Depends(get_tracker)) -> IceServersResponse:
    """Return the ICE server configuration clients should use."""

    return IceServersResponse(ice_servers=tracker.ice_servers())


@router.get("/stats", response_model=PeerStatsResponse, dependencies=[Depends(limit_api)])
async def get_peer_stats(tracker: PeerConnectionTracker = Depends(get_tracker)) -> PeerStatsResponse:
    """Return peer-connection counters across rooms."""

    return PeerStatsResponse(**tracker.stats())


@router.get("/rooms/{room_id}", response_model=RoomConnectionsResponse, dependencies=[Depends(limit_api)])
async def get_room_connections(
    room_id: str,
    tracker: PeerConnectionTracker = Depends(get_tracker),
) -> RoomConnectionsResponse:
    """Return the peer-connection snapshot for one room."""

    snapshot = tracker.room_snapshot(room_id)
    if snapshot is None:
        raise RoomNotFound("Room not found in WebRTC manager")
    return RoomConnectionsResponse(**snapshot)


@router.websocket("/signaling")
async def signaling_endpoint(
    websocket: WebSocket,
    dispatcher: SignalingDispatcher = Depends(get_dispatcher),
) -> None:
    """Carry signaling events for one client session."""

    await websocket.accept()

    async def close() -> None:
        if websocket.application_state is WebSocketState.CONNECTED:
            await websocket.close(code=REMOVED_CLOSE_CODE, reason="Removed from room")

    session = SignalingSession(
        session_id=str(uuid4()),
        send=websocket.send_json,
        address=client_address(websocket),
        close=close,
    )
    await dispatcher.connect(session)

    try:
        while websocket.application_state is WebSocketState.CONNECTED:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            await dispatcher.dispatch(session, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await dispatcher.disconnect(session)
