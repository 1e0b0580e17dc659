"""Room administration endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_dispatcher, get_registry, limit_api, limit_room_creation
from ..schemas import rooms as schemas
from ..services.errors import RoomNotFound
from ..services.registry import ConnectionRegistry
from ..services.signaling import SignalingDispatcher

router = APIRouter(dependencies=[Depends(limit_api)])


@router.post(
    "/rooms",
    response_model=schemas.CreateRoomResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_room_creation)],
)
async def create_room(
    payload: schemas.CreateRoomRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> schemas.CreateRoomResponse:
    """Create a room and return its identifier."""

    room = registry.create_room(payload.created_by, payload.settings.model_dump())
    return schemas.CreateRoomResponse(room_id=room.room_id, room=schemas.room_summary(room.info()))


@router.get("/rooms", response_model=schemas.RoomListResponse)
async def list_rooms(registry: ConnectionRegistry = Depends(get_registry)) -> schemas.RoomListResponse:
    """Return every live room."""

    return schemas.RoomListResponse(items=[schemas.room_summary(room.info()) for room in registry.list_rooms()])


@router.get("/rooms/{room_id}", response_model=schemas.RoomSummary)
async def get_room(room_id: str, registry: ConnectionRegistry = Depends(get_registry)) -> schemas.RoomSummary:
    """Return a room snapshot."""

    room = registry.get_room(room_id)
    if room is None:
        raise RoomNotFound()
    return schemas.room_summary(room.info())



@router.get("/stats", response_model=schemas.RoomStatsResponse)
async def get_stats(dispatcher: SignalingDispatcher = Depends(get_dispatcher)) -> schemas.RoomStatsResponse:
    """Return aggregate room counters."""

    stats = dispatcher.registry.stats()
    return schemas.RoomStatsResponse(active_sessions=dispatcher.session_count, **stats)
