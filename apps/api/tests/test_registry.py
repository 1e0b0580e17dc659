"""Tests for room lifecycle in the connection registry."""
from __future__ import annotations

import pytest

from app.models.room import MediaKind, Role
from app.services.errors import InvalidPassword, RoomFull, RoomInactive, RoomNotFound
from app.services.media import MediaStateTable
from app.services.registry import ConnectionRegistry, ParticipantInfo


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(MediaStateTable())


def test_create_room_clamps_capacity(registry: ConnectionRegistry) -> None:
    room = registry.create_room("alice", {"capacity": 500})
    assert room.capacity == 50
    assert room.created_by == "alice"
    assert registry.get_room(room.room_id) is room

    default_room = registry.create_room()
    assert default_room.capacity == 10
    assert default_room.room_id != room.room_id


def test_capacity_two_rejects_third_participant(registry: ConnectionRegistry) -> None:
    room = registry.create_room(settings={"capacity": 2})

    _, a = registry.join_room(room.room_id, "A", ParticipantInfo(name="Alice"))
    _, b = registry.join_room(room.room_id, "B", ParticipantInfo(name="Bob"))

    assert a.role is Role.HOST
    assert b.role is Role.PARTICIPANT

    with pytest.raises(RoomFull):
        registry.join_room(room.room_id, "C")

    assert len(room.participants) == 2
    assert registry.get_participant_room("C") is None


def test_join_validates_room_and_password(registry: ConnectionRegistry) -> None:
    with pytest.raises(RoomNotFound):
        registry.join_room("missing", "A")

    room = registry.create_room(settings={"require_password": True, "password": "s3cret"})
    with pytest.raises(InvalidPassword):
        registry.join_room(room.room_id, "A", password="nope")
    registry.join_room(room.room_id, "A", password="s3cret")

    registry.deactivate_room(room.room_id)
    with pytest.raises(RoomInactive):
        registry.join_room(room.room_id, "B", password="s3cret")


def test_host_leaves_and_survivor_becomes_host(registry: ConnectionRegistry) -> None:
    room = registry.create_room()
    registry.join_room(room.room_id, "A")
    registry.join_room(room.room_id, "B")
    registry.join_room(room.room_id, "C")

    left_room, left = registry.leave_room("A")

    assert left_room is room
    assert left.participant_id == "A"
    assert room.participants["B"].role is Role.HOST
    assert room.participants["C"].role is Role.PARTICIPANT
    assert [p for p in room.participants.values() if p.is_host] == [room.participants["B"]]


def test_room_deleted_as_soon_as_it_empties(registry: ConnectionRegistry) -> None:
    room = registry.create_room()
    registry.join_room(room.room_id, "A")

    registry.leave_room("A")

    assert registry.get_room(room.room_id) is None
    assert registry.leave_room("A") is None
    assert len(registry.media) == 0


def test_joining_another_room_leaves_the_first(registry: ConnectionRegistry) -> None:
    first = registry.create_room()
    second = registry.create_room()
    registry.join_room(first.room_id, "A")
    registry.join_room(first.room_id, "B")

    registry.join_room(second.room_id, "A")

    assert "A" not in first.participants
    assert first.participants["B"].is_host
    assert registry.get_participant_room("A") is second
    assert registry.stats()["total_users"] == 2


def test_rejoining_same_room_as_last_member_keeps_room(registry: ConnectionRegistry) -> None:
    room = registry.create_room()
    registry.join_room(room.room_id, "A")

    _, again = registry.join_room(room.room_id, "A")

    assert registry.get_room(room.room_id) is room
    assert again.is_host


def test_update_media_writes_shared_state() -> None:
    media = MediaStateTable()
    registry = ConnectionRegistry(media)
    room = registry.create_room()
    registry.join_room(room.room_id, "A")

    participant = registry.update_participant_media("A", MediaKind.VIDEO, False)

    assert participant is not None
    assert participant.media.video is False
    assert media.get("A") is participant.media
    assert registry.update_participant_media("ghost", MediaKind.AUDIO, False) is None


def test_sweep_removes_orphaned_empty_rooms(registry: ConnectionRegistry) -> None:
    kept = registry.create_room()
    registry.join_room(kept.room_id, "A")
    registry.create_room()
    registry.create_room()

    assert registry.sweep_empty_rooms() == 2
    assert [room.room_id for room in registry.list_rooms()] == [kept.room_id]


def test_room_info_hides_password(registry: ConnectionRegistry) -> None:
    room = registry.create_room(settings={"require_password": True, "password": "pw"})
    info = room.info()

    assert info["settings"]["require_password"] is True
    assert "password" not in info["settings"]
