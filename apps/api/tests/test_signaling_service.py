"""Tests for the signaling dispatcher event contract."""
from __future__ import annotations

import pytest

from app.services.media import MediaStateTable
from app.services.peers import LinkStatus, PeerConnectionTracker
from app.services.rate_limit import RateLimiter
from app.services.registry import ConnectionRegistry
from app.services.signaling import SignalingDispatcher, SignalingSession


class DummyConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []
        self.closed = False

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True

    def of_type(self, event_type: str) -> list[dict]:
        return [message for message in self.messages if message["type"] == event_type]

    def last(self) -> dict:
        return self.messages[-1]


def make_dispatcher(**kwargs) -> SignalingDispatcher:
    media = MediaStateTable()
    return SignalingDispatcher(
        ConnectionRegistry(media),
        PeerConnectionTracker(media),
        RateLimiter(),
        **kwargs,
    )


async def connect(dispatcher: SignalingDispatcher, session_id: str, address: str = "10.0.0.1"):
    conn = DummyConnection(session_id)
    session = SignalingSession(session_id=session_id, send=conn.send, address=address, close=conn.close)
    await dispatcher.connect(session)
    return session, conn


async def join(dispatcher, session, room_id: str, name: str, **extra) -> None:
    await dispatcher.dispatch(session, {"type": "join", "room_id": room_id, "name": name, **extra})


@pytest.mark.asyncio
async def test_join_sends_snapshot_and_notifies_others():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")

    assert conn_a.messages == [{"type": "session-ready", "session_id": "A"}]

    await join(dispatcher, sess_a, room.room_id, "Alice")
    joined_a = conn_a.last()
    assert joined_a["type"] == "room-joined"
    assert joined_a["participant"]["role"] == "host"
    assert joined_a["existing_participants"] == []
    assert joined_a["ice_servers"][0]["urls"].startswith("stun:")

    await join(dispatcher, sess_b, room.room_id, "Bob")
    joined_b = conn_b.last()
    assert [p["participant_id"] for p in joined_b["existing_participants"]] == ["A"]
    assert joined_b["participant"]["role"] == "participant"

    notice = conn_a.last()
    assert notice["type"] == "participant-joined"
    assert notice["participant_id"] == "B"
    assert notice["room"]["user_count"] == 2
    assert sess_b.room_id == room.room_id


@pytest.mark.asyncio
async def test_join_failures_emit_typed_errors():
    dispatcher = make_dispatcher()
    sess, conn = await connect(dispatcher, "A")

    await join(dispatcher, sess, "missing", "Alice")
    error = conn.last()
    assert error == {
        "type": "error",
        "code": "room_not_found",
        "message": "Room not found",
        "event": "join",
    }
    assert not sess.bound

    locked = dispatcher.registry.create_room(settings={"require_password": True, "password": "pw"})
    await join(dispatcher, sess, locked.room_id, "Alice", password="wrong")
    assert conn.last()["code"] == "invalid_password"


@pytest.mark.asyncio
async def test_room_full_rejected_over_socket():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room(settings={"capacity": 2})
    sessions = [await connect(dispatcher, sid) for sid in ("A", "B", "C")]

    for (session, _), name in zip(sessions, ("Alice", "Bob", "Carol")):
        await join(dispatcher, session, room.room_id, name)

    assert sessions[2][1].last()["code"] == "room_full"
    assert len(room.participants) == 2
    assert not sessions[2][0].bound


@pytest.mark.asyncio
async def test_events_before_join_fail_with_not_in_room():
    dispatcher = make_dispatcher()
    sess, conn = await connect(dispatcher, "A")

    await dispatcher.dispatch(sess, {"type": "offer", "target": "B", "offer": {"sdp": "x"}})
    assert conn.last()["code"] == "not_in_room"

    await dispatcher.dispatch(sess, {"type": "send-message", "message": "hi"})
    assert conn.last()["code"] == "not_in_room"


@pytest.mark.asyncio
async def test_malformed_payloads_are_rejected():
    dispatcher = make_dispatcher()
    sess, conn = await connect(dispatcher, "A")

    await dispatcher.dispatch(sess, "not json")
    assert conn.last()["code"] == "invalid_event"

    await dispatcher.dispatch(sess, {"type": "teleport"})
    assert conn.last()["code"] == "invalid_event"

    await dispatcher.dispatch(sess, '{"type": "join", "room_id": "r"}')
    assert conn.last()["code"] == "invalid_event"
    assert "name" in conn.last()["message"]


@pytest.mark.asyncio
async def test_offer_answer_and_candidates_are_relayed_to_target():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_a, {"type": "offer", "target": "B", "offer": {"sdp": "o"}})
    offer = conn_b.last()
    assert offer == {
        "type": "offer",
        "sender": "A",
        "target": "B",
        "connection_id": "A-B",
        "offer": {"sdp": "o"},
    }
    assert dispatcher.tracker.get_link(room.room_id, "A", "B").status is LinkStatus.CONNECTING

    await dispatcher.dispatch(sess_b, {"type": "answer", "target": "A", "answer": {"sdp": "a"}})
    answer = conn_a.last()
    assert answer["type"] == "answer"
    assert answer["connection_id"] == "A-B"
    assert dispatcher.tracker.get_link(room.room_id, "A", "B").status is LinkStatus.CONNECTED

    await dispatcher.dispatch(sess_b, {"type": "ice-candidate", "target": "A", "candidate": {"candidate": "c1"}})
    assert conn_a.last() == {"type": "ice-candidate", "sender": "B", "target": "A", "candidate": {"candidate": "c1"}}


@pytest.mark.asyncio
async def test_answer_without_offer_is_an_error():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, _ = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_a, {"type": "answer", "target": "B", "answer": {"sdp": "a"}})

    assert conn_a.last()["code"] == "negotiation_failed"


@pytest.mark.asyncio
async def test_media_toggle_updates_both_stores_and_notifies_others():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")
    sent_before = len(conn_a.messages)

    await dispatcher.dispatch(sess_a, {"type": "toggle-video", "enabled": False})

    changed = conn_b.last()
    assert changed["type"] == "media-changed"
    assert changed["kind"] == "video"
    assert changed["media_state"] == {"audio": True, "video": False, "screen": False}
    assert room.participants["A"].media.video is False
    assert dispatcher.tracker.room_snapshot(room.room_id)["users"]["A"]["media_state"]["video"] is False
    assert len(conn_a.messages) == sent_before

    await dispatcher.dispatch(sess_b, {"type": "start-screen-share", "stream_id": "s1"})
    started = conn_a.last()
    assert started["type"] == "screen-share-started"
    assert started["stream_id"] == "s1"
    assert started["media_state"]["screen"] is True

    await dispatcher.dispatch(sess_b, {"type": "stop-screen-share"})
    assert conn_a.last()["type"] == "screen-share-stopped"
    assert room.participants["B"].media.screen is False


@pytest.mark.asyncio
async def test_screen_share_blocked_when_disabled():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room(settings={"allow_screen_share": False})
    sess, conn = await connect(dispatcher, "A")
    await join(dispatcher, sess, room.room_id, "Alice")

    await dispatcher.dispatch(sess, {"type": "start-screen-share"})

    assert conn.last()["code"] == "permission_denied"
    assert room.participants["A"].media.screen is False


@pytest.mark.asyncio
async def test_recording_is_host_only():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_b, {"type": "start-recording"})
    assert conn_b.last()["code"] == "permission_denied"
    assert room.settings.recording_enabled is False

    await dispatcher.dispatch(sess_a, {"type": "start-recording"})
    assert room.settings.recording_enabled is True
    assert conn_b.last()["type"] == "recording-started"
    assert conn_b.last()["started_by"] == "A"

    await dispatcher.dispatch(sess_b, {"type": "stop-recording"})
    assert conn_b.last()["code"] == "permission_denied"
    assert room.settings.recording_enabled is True

    await dispatcher.dispatch(sess_a, {"type": "stop-recording"})
    assert room.settings.recording_enabled is False
    assert conn_b.last()["type"] == "recording-stopped"


@pytest.mark.asyncio
async def test_host_mutes_participant_in_both_stores():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_b, {"type": "mute-participant", "target": "A"})
    assert conn_b.last()["code"] == "permission_denied"

    await dispatcher.dispatch(sess_a, {"type": "mute-participant", "target": "B"})

    for conn in (conn_a, conn_b):
        assert conn.last()["type"] == "participant-muted"
        assert conn.last()["target_id"] == "B"
    assert room.participants["B"].media.audio is False
    assert dispatcher.tracker.room_snapshot(room.room_id)["users"]["B"]["media_state"]["audio"] is False

    await dispatcher.dispatch(sess_a, {"type": "mute-participant", "target": "ghost"})
    assert conn_a.last()["code"] == "participant_not_found"


@pytest.mark.asyncio
async def test_host_removes_participant():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_a, {"type": "remove-participant", "target": "B"})

    assert conn_b.of_type("removed-from-room")[0]["removed_by"] == "A"
    assert conn_b.closed
    assert not sess_b.bound
    assert "B" not in room.participants
    assert dispatcher.tracker.room_snapshot(room.room_id)["user_count"] == 1
    assert conn_a.last()["type"] == "participant-disconnected"
    assert conn_a.last()["participant_id"] == "B"

    await dispatcher.disconnect(sess_b)
    assert len(conn_a.of_type("participant-disconnected")) == 1


@pytest.mark.asyncio
async def test_hand_raise_chat_and_files():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_b, {"type": "raise-hand", "raised": True})
    assert conn_a.last()["type"] == "hand-raised"
    assert room.participants["B"].hand_raised is True

    await dispatcher.dispatch(sess_b, {"type": "send-message", "message": "hello"})
    for conn in (conn_a, conn_b):
        message = conn.last()
        assert message["type"] == "new-message"
        assert message["message"] == "hello"
        assert message["name"] == "Bob"
        assert message["id"]
        assert message["timestamp"]
    assert conn_a.last()["id"] == conn_b.last()["id"]

    await dispatcher.dispatch(
        sess_a,
        {"type": "share-file", "file_name": "notes.pdf", "file_size": 12, "file_url": "https://files/notes.pdf"},
    )
    assert conn_b.last()["type"] == "new-file"
    assert conn_b.last()["file_name"] == "notes.pdf"


@pytest.mark.asyncio
async def test_chat_blocked_when_disabled():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room(settings={"allow_chat": False})
    sess, conn = await connect(dispatcher, "A")
    await join(dispatcher, sess, room.room_id, "Alice")

    await dispatcher.dispatch(sess, {"type": "send-message", "message": "hello"})

    assert conn.last()["code"] == "permission_denied"


@pytest.mark.asyncio
async def test_leave_then_disconnect_tears_down_once():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_a, {"type": "leave-room"})
    await dispatcher.disconnect(sess_a)

    assert conn_a.last() == {"type": "left-room", "room_id": room.room_id}
    assert len(conn_b.of_type("participant-disconnected")) == 1
    assert room.participants["B"].is_host
    assert dispatcher.registry.stats()["total_users"] == 1
    assert dispatcher.tracker.room_snapshot(room.room_id)["user_count"] == 1
    assert dispatcher.session_count == 1

    await dispatcher.disconnect(sess_b)
    assert dispatcher.registry.get_room(room.room_id) is None
    assert dispatcher.tracker.room_snapshot(room.room_id) is None


@pytest.mark.asyncio
async def test_joining_second_room_leaves_first():
    dispatcher = make_dispatcher()
    first = dispatcher.registry.create_room()
    second = dispatcher.registry.create_room()
    sess_a, _ = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, first.room_id, "Alice")
    await join(dispatcher, sess_b, first.room_id, "Bob")
    await dispatcher.dispatch(sess_a, {"type": "offer", "target": "B", "offer": {}})

    await join(dispatcher, sess_a, second.room_id, "Alice")

    assert sess_a.room_id == second.room_id
    assert "A" not in first.participants
    assert conn_b.last()["type"] == "participant-disconnected"
    assert dispatcher.tracker.room_snapshot(first.room_id)["total_connections"] == 0
    assert dispatcher.tracker.stats()["pending_offers"] == 0
    assert dispatcher.tracker.is_tracked(second.room_id, "A")


@pytest.mark.asyncio
async def test_event_rate_limit_per_address_and_type():
    dispatcher = make_dispatcher(event_rate_limit=2)
    room = dispatcher.registry.create_room()
    sess, conn = await connect(dispatcher, "A")
    await join(dispatcher, sess, room.room_id, "Alice")

    for _ in range(3):
        await dispatcher.dispatch(sess, {"type": "raise-hand", "raised": True})

    assert conn.last()["code"] == "rate_limited"
    assert room.participants["A"].hand_raised is True

    sent_before = len(conn.messages)
    await dispatcher.dispatch(sess, {"type": "toggle-audio", "enabled": False})

    assert len(conn.messages) == sent_before
    assert room.participants["A"].media.audio is False


@pytest.mark.asyncio
async def test_host_ends_room_and_disconnects_members():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_a, {"type": "end-room"})

    for conn in (conn_a, conn_b):
        assert conn.of_type("room-closed")[0]["reason"] == "Room has been ended by host"
        assert conn.closed
    assert not sess_a.bound and not sess_b.bound
    assert dispatcher.registry.get_room(room.room_id) is None


@pytest.mark.asyncio
async def test_only_host_can_end_room():
    dispatcher = make_dispatcher()
    room = dispatcher.registry.create_room()
    sess_a, conn_a = await connect(dispatcher, "A")
    sess_b, conn_b = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")

    await dispatcher.dispatch(sess_b, {"type": "end-room"})

    assert conn_b.last()["code"] == "permission_denied"
    assert conn_b.last()["event"] == "end-room"
    assert room.is_active is True
    assert len(room.participants) == 2
    assert not conn_a.of_type("room-closed")
    assert not conn_a.closed and not conn_b.closed


@pytest.mark.asyncio
async def test_sweeps_run_through_dispatcher():
    clock_now = [0.0]
    media = MediaStateTable()
    tracker = PeerConnectionTracker(media, clock=lambda: clock_now[0])
    dispatcher = SignalingDispatcher(ConnectionRegistry(media), tracker, offer_max_age_seconds=30)
    room = dispatcher.registry.create_room()
    dispatcher.registry.create_room()
    sess_a, _ = await connect(dispatcher, "A")
    sess_b, _ = await connect(dispatcher, "B")
    await join(dispatcher, sess_a, room.room_id, "Alice")
    await join(dispatcher, sess_b, room.room_id, "Bob")
    await dispatcher.dispatch(sess_a, {"type": "offer", "target": "B", "offer": {}})

    assert await dispatcher.sweep_rooms() == 1
    assert await dispatcher.sweep_offers() == 0

    clock_now[0] = 31
    assert await dispatcher.sweep_offers() == 1
    assert tracker.stats()["pending_offers"] == 0
