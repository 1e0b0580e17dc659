"""Signaling protocol state machine binding transport sessions to rooms.

Every inbound event is validated against the closed event vocabulary, checked
against the per-address rate limit, and then handled against the room registry
and the peer tracker. Store mutations happen inside ``self._lock`` without any
awaits, so a concurrent reader never sees a join or leave half applied; all
sends happen after the lock is released.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Tuple
from uuid import uuid4

from pydantic import ValidationError

from ..models.room import MediaKind, Participant, Room
from ..schemas import events as ev
from .errors import (
    InvalidEvent,
    NegotiationFailed,
    NotInRoom,
    ParticipantNotFound,
    PermissionDenied,
    SignalingError,
)
from .peers import PeerConnectionTracker
from .rate_limit import RateLimiter
from .registry import ConnectionRegistry, ParticipantInfo

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]
CloseCallable = Callable[[], Awaitable[None]]

TOGGLE_KINDS = {
    "toggle-audio": MediaKind.AUDIO,
    "toggle-video": MediaKind.VIDEO,
    "toggle-screen-share": MediaKind.SCREEN,
}


@dataclass(slots=True)
class SignalingSession:
    """One connected client; bound to a room once ``room_id`` is set."""

    session_id: str
    send: SendCallable
    address: str = "unknown"
    close: CloseCallable | None = None
    room_id: str | None = None
    participant_id: str | None = None

    @property
    def bound(self) -> bool:
        return self.room_id is not None and self.participant_id is not None


@dataclass(slots=True)
class _Departure:
    room_id: str
    participant: Participant
    room: Room | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SignalingDispatcher:
    """Route session events into the room registry and peer tracker."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        tracker: PeerConnectionTracker,
        rate_limiter: RateLimiter | None = None,
        *,
        event_rate_limit: int = 50,
        event_rate_window_seconds: float = 60.0,
        offer_max_age_seconds: float = 30.0,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._rate_limiter = rate_limiter or RateLimiter()
        self._event_rate_limit = event_rate_limit
        self._event_rate_window = event_rate_window_seconds
        self._offer_max_age = offer_max_age_seconds
        self._sessions: Dict[str, SignalingSession] = {}
        self._lock = asyncio.Lock()
        self._handlers: Dict[str, Callable[[SignalingSession, Any], Awaitable[None]]] = {
            "join": self._on_join,
            "leave-room": self._on_leave,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "toggle-audio": self._on_toggle_media,
            "toggle-video": self._on_toggle_media,
            "toggle-screen-share": self._on_toggle_media,
            "start-screen-share": self._on_start_screen_share,
            "stop-screen-share": self._on_stop_screen_share,
            "start-recording": self._on_start_recording,
            "stop-recording": self._on_stop_recording,
            "mute-participant": self._on_mute_participant,
            "remove-participant": self._on_remove_participant,
            "raise-hand": self._on_raise_hand,
            "send-message": self._on_send_message,
            "share-file": self._on_share_file,
            "connection-quality": self._on_connection_quality,
            "end-room": self._on_end_room,
        }

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def tracker(self) -> PeerConnectionTracker:
        return self._tracker

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # -- session lifecycle -------------------------------------------------

    async def connect(self, session: SignalingSession) -> None:
        self._sessions[session.session_id] = session
        logger.info("Session connected: %s from %s", session.session_id, session.address)
        await self._send(session, ev.SessionReady(session_id=session.session_id))

    async def disconnect(self, session: SignalingSession) -> None:
        """Abrupt disconnect; runs the same teardown as an explicit leave."""

        await self._leave(session)
        self._sessions.pop(session.session_id, None)
        logger.info("Session disconnected: %s", session.session_id)

    async def dispatch(self, session: SignalingSession, raw: str | bytes | dict) -> None:
        """Handle one inbound frame; failures become an error event to the sender."""

        event_type: str | None = None
        try:
            event = self._parse(raw)
            event_type = event.type
            self._rate_limiter.hit(
                f"event:{session.address}:{event_type}",
                self._event_rate_limit,
                self._event_rate_window,
            )
            await self._handlers[event_type](session, event)
        except SignalingError as exc:
            logger.warning(
                "Rejected %s from session %s: %s (%s)", event_type or "event", session.session_id, exc.code, exc.message
            )
            await self._send(session, ev.ErrorEvent(code=exc.code, message=exc.message, event=event_type))
        except Exception:  # noqa: BLE001 - a faulty handler must not end the session
            logger.exception("Failed handling %s from session %s", event_type or "event", session.session_id)
            await self._send(
                session, ev.ErrorEvent(code="internal_error", message="Internal server error", event=event_type)
            )

    def _parse(self, raw: str | bytes | dict) -> Any:
        try:
            if isinstance(raw, (str, bytes)):
                return ev.inbound_event_adapter.validate_json(raw)
            return ev.inbound_event_adapter.validate_python(raw)
        except ValidationError as exc:
            errors = exc.errors()
            detail = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'event'}: {error['msg']}" for error in errors[:3]
            )
            raise InvalidEvent(detail or None) from exc

    # -- membership --------------------------------------------------------

    async def _on_join(self, session: SignalingSession, event: ev.JoinEvent) -> None:
        participant_id = session.session_id
        failure: SignalingError | None = None
        async with self._lock:
            previous_room_id = session.room_id
            previous = self._registry.get_participant(participant_id) if session.bound else None
            try:
                room, participant = self._registry.join_room(
                    event.room_id,
                    participant_id,
                    ParticipantInfo(name=event.name, session_id=session.session_id),
                    event.password,
                )
            except SignalingError as exc:
                failure = exc
            departure = self._reconcile_rejoin(session, previous_room_id, previous)

            if failure is None:
                self._tracker.add_participant(room.room_id, participant_id, session.session_id)
                session.room_id = room.room_id
                session.participant_id = participant_id

                existing = [p.info() for p in room.participants.values() if p.participant_id != participant_id]
                room_info = room.info()
                participant_info = participant.info()
                ice_servers = self._tracker.ice_servers()

        if departure is not None:
            await self._announce_departure(departure)
        if failure is not None:
            raise failure

        await self._send(
            session,
            ev.RoomJoined(
                room_id=room.room_id,
                participant_id=participant_id,
                participant=participant_info,
                room=room_info,
                existing_participants=existing,
                ice_servers=ice_servers,
            ),
        )
        await self._broadcast(
            room.room_id,
            ev.ParticipantJoined(participant_id=participant_id, participant=participant_info, room=room_info),
            exclude=participant_id,
        )
        logger.info("Participant %s successfully joined room %s", participant_id, room.room_id)

    def _reconcile_rejoin(
        self, session: SignalingSession, previous_room_id: str | None, previous: Participant | None
    ) -> _Departure | None:
        """Sync the tracker and session once the registry dropped an earlier membership."""

        if previous is None or previous_room_id is None:
            return None
        if self._registry.get_participant(previous.participant_id) is previous:
            return None
        self._tracker.remove_participant(previous_room_id, previous.participant_id)
        session.room_id = session.participant_id = None
        room = self._registry.get_room(previous_room_id)
        return _Departure(previous_room_id, previous, room if room is not None and not room.is_empty() else None)

    async def _on_leave(self, session: SignalingSession, event: ev.LeaveRoomEvent) -> None:
        departure = await self._leave(session)
        if departure is not None:
            await self._send(session, ev.LeftRoom(room_id=departure.room_id))

    async def _leave(self, session: SignalingSession) -> _Departure | None:
        async with self._lock:
            departure = self._unbind(session)
        if departure is not None:
            await self._announce_departure(departure)
        return departure

    def _unbind(self, session: SignalingSession) -> _Departure | None:
        """Tear down a session's membership; caller holds the lock. Safe to repeat."""

        if not session.bound:
            return None
        room_id, participant_id = session.room_id, session.participant_id
        session.room_id = session.participant_id = None

        result = self._registry.leave_room(participant_id)
        self._tracker.remove_participant(room_id, participant_id)
        if result is None:
            return None
        room, participant = result
        return _Departure(room_id, participant, None if room.is_empty() else room)

    async def _announce_departure(self, departure: _Departure) -> None:
        if departure.room is None:
            return
        await self._broadcast(
            departure.room_id,
            ev.ParticipantDisconnected(
                participant_id=departure.participant.participant_id,
                participant=departure.participant.info(),
                room=departure.room.info(),
            ),
            exclude=departure.participant.participant_id,
        )

    # -- negotiation relay -------------------------------------------------

    async def _on_offer(self, session: SignalingSession, event: ev.OfferEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            connection_id = self._tracker.handle_offer(room_id, participant_id, event.target, event.offer)
        if connection_id is None:
            raise NegotiationFailed("Failed to process offer")

        await self._send_to(
            room_id,
            event.target,
            ev.OfferRelay(sender=participant_id, target=event.target, connection_id=connection_id, offer=event.offer),
        )
        logger.info("Offer forwarded: %s -> %s", participant_id, event.target)

    async def _on_answer(self, session: SignalingSession, event: ev.AnswerEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            accepted = self._tracker.handle_answer(room_id, participant_id, event.target, event.answer)
            link = self._tracker.get_link(room_id, participant_id, event.target)
        if not accepted or link is None:
            raise NegotiationFailed("Failed to process answer")

        await self._send_to(
            room_id,
            event.target,
            ev.AnswerRelay(
                sender=participant_id, target=event.target, connection_id=link.connection_id, answer=event.answer
            ),
        )
        logger.info("Answer forwarded: %s -> %s", participant_id, event.target)

    async def _on_ice_candidate(self, session: SignalingSession, event: ev.IceCandidateEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        self._require_member(room_id, event.target)
        await self._send_to(
            room_id,
            event.target,
            ev.IceCandidateRelay(sender=participant_id, target=event.target, candidate=event.candidate),
        )

    # -- media -------------------------------------------------------------

    async def _on_toggle_media(self, session: SignalingSession, event: ev.ToggleMediaEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        kind = TOGGLE_KINDS[event.type]
        _, media_state = await self._set_media(room_id, participant_id, kind, event.enabled)
        await self._broadcast(
            room_id,
            ev.MediaChanged(participant_id=participant_id, kind=kind.value, enabled=event.enabled, media_state=media_state),
            exclude=participant_id,
        )

    async def _on_start_screen_share(self, session: SignalingSession, event: ev.StartScreenShareEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        participant, media_state = await self._set_media(room_id, participant_id, MediaKind.SCREEN, True)
        await self._broadcast(
            room_id,
            ev.ScreenShareStarted(
                participant_id=participant_id, name=participant.name, stream_id=event.stream_id, media_state=media_state
            ),
            exclude=participant_id,
        )
        logger.info("Screen sharing started by %s in room %s", participant_id, room_id)

    async def _on_stop_screen_share(self, session: SignalingSession, event: ev.StopScreenShareEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        participant, media_state = await self._set_media(room_id, participant_id, MediaKind.SCREEN, False)
        await self._broadcast(
            room_id,
            ev.ScreenShareStopped(participant_id=participant_id, name=participant.name, media_state=media_state),
            exclude=participant_id,
        )
        logger.info("Screen sharing stopped by %s in room %s", participant_id, room_id)

    async def _set_media(
        self, room_id: str, participant_id: str, kind: MediaKind, enabled: bool
    ) -> Tuple[Participant, dict[str, bool]]:
        async with self._lock:
            room = self._require_room(room_id)
            if kind is MediaKind.SCREEN and enabled and not room.settings.allow_screen_share:
                raise PermissionDenied("Screen sharing is disabled in this room")
            participant = self._registry.update_participant_media(participant_id, kind, enabled)
            media_state = self._tracker.update_media_state(room_id, participant_id, kind, enabled)
        if participant is None or media_state is None:
            raise NotInRoom()
        return participant, media_state

    # -- moderation --------------------------------------------------------

    async def _on_start_recording(self, session: SignalingSession, event: ev.StartRecordingEvent) -> None:
        await self._set_recording(session, True)

    async def _on_stop_recording(self, session: SignalingSession, event: ev.StopRecordingEvent) -> None:
        await self._set_recording(session, False)

    async def _set_recording(self, session: SignalingSession, enabled: bool) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            room = self._require_room(room_id)
            action = "start" if enabled else "stop"
            host = self._require_host(room, participant_id, f"Only host can {action} recording")
            room.settings.recording_enabled = enabled

        if enabled:
            notice: ev.OutboundEvent = ev.RecordingStarted(started_by=participant_id, name=host.name, timestamp=_now())
        else:
            notice = ev.RecordingStopped(stopped_by=participant_id, name=host.name, timestamp=_now())
        await self._broadcast(room_id, notice, exclude=participant_id)
        logger.info("Recording %s in room %s by %s", "started" if enabled else "stopped", room_id, participant_id)

    async def _on_mute_participant(self, session: SignalingSession, event: ev.MuteParticipantEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            room = self._require_room(room_id)
            host = self._require_host(room, participant_id, "Only host can mute participants")
            target = room.participants.get(event.target)
            if target is None:
                raise ParticipantNotFound()
            self._registry.update_participant_media(target.participant_id, MediaKind.AUDIO, False)
            self._tracker.update_media_state(room_id, target.participant_id, MediaKind.AUDIO, False)

        await self._broadcast(
            room_id,
            ev.ParticipantMuted(
                target_id=target.participant_id, target_name=target.name, muted_by=participant_id, muted_by_name=host.name
            ),
        )
        logger.info("Participant %s muted by host %s in room %s", target.participant_id, participant_id, room_id)

    async def _on_remove_participant(self, session: SignalingSession, event: ev.RemoveParticipantEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            room = self._require_room(room_id)
            host = self._require_host(room, participant_id, "Only host can remove participants")
            if event.target == participant_id:
                raise PermissionDenied("Host cannot remove themselves")
            target_session = self._sessions.get(event.target)
            if event.target not in room.participants or target_session is None or target_session.room_id != room_id:
                raise ParticipantNotFound()

        await self._send(target_session, ev.RemovedFromRoom(removed_by=participant_id, removed_by_name=host.name))
        await self._leave(target_session)
        await self._close(target_session)
        logger.info("Participant %s removed by host %s from room %s", event.target, participant_id, room_id)

    async def _on_raise_hand(self, session: SignalingSession, event: ev.RaiseHandEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            participant = self._registry.set_hand_raised(participant_id, event.raised)
        if participant is None:
            raise NotInRoom()
        await self._broadcast(
            room_id,
            ev.HandRaised(participant_id=participant_id, name=participant.name, raised=event.raised, timestamp=_now()),
            exclude=participant_id,
        )
        logger.info("Hand %s by %s in room %s", "raised" if event.raised else "lowered", participant_id, room_id)

    # -- chat and relays ---------------------------------------------------

    async def _on_send_message(self, session: SignalingSession, event: ev.SendMessageEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        participant = self._require_chat(room_id, participant_id)
        await self._broadcast(
            room_id,
            ev.NewMessage(
                id=str(uuid4()),
                participant_id=participant_id,
                name=participant.name,
                message=event.message,
                kind=event.kind,
                timestamp=_now(),
            ),
        )
        logger.info("Message sent in room %s by %s", room_id, participant_id)

    async def _on_share_file(self, session: SignalingSession, event: ev.ShareFileEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        participant = self._require_chat(room_id, participant_id)
        await self._broadcast(
            room_id,
            ev.NewFile(
                id=str(uuid4()),
                participant_id=participant_id,
                name=participant.name,
                file_name=event.file_name,
                file_size=event.file_size,
                file_type=event.file_type,
                file_url=event.file_url,
                timestamp=_now(),
            ),
        )
        logger.info("File shared in room %s by %s: %s", room_id, participant_id, event.file_name)

    async def _on_connection_quality(self, session: SignalingSession, event: ev.ConnectionQualityEvent) -> None:
        room_id, participant_id = self._require_bound(session)
        await self._broadcast(
            room_id,
            ev.ConnectionQuality(participant_id=participant_id, quality=event.quality, stats=event.stats),
            exclude=participant_id,
        )

    # -- administration ----------------------------------------------------

    async def _on_end_room(self, session: SignalingSession, event: ev.EndRoomEvent) -> None:
        """Deactivate the room and disconnect every session in it; host only."""

        room_id, participant_id = self._require_bound(session)
        async with self._lock:
            room = self._require_room(room_id)
            self._require_host(room, participant_id, "Only host can end the room")
            self._registry.deactivate_room(room_id)
            members = list(self._room_sessions(room_id))

        notice = ev.RoomClosed(room_id=room_id, reason="Room has been ended by host")
        for member in members:
            await self._send(member, notice)
            await self._leave(member)
            await self._close(member)
        logger.info("Room %s ended by host %s (%d sessions disconnected)", room_id, participant_id, len(members))

    # -- sweeps ------------------------------------------------------------

    async def sweep_rooms(self) -> int:
        async with self._lock:
            return self._registry.sweep_empty_rooms()

    async def sweep_offers(self) -> int:
        async with self._lock:
            expired = self._tracker.sweep_expired_offers(self._offer_max_age)
        if expired:
            logger.info("Cleaned up %d expired offers", expired)
        return expired

    # -- helpers -----------------------------------------------------------

    def _require_bound(self, session: SignalingSession) -> Tuple[str, str]:
        if not session.bound:
            raise NotInRoom("User not in room")
        return session.room_id, session.participant_id  # type: ignore[return-value]

    def _require_room(self, room_id: str) -> Room:
        room = self._registry.get_room(room_id)
        if room is None:
            raise NotInRoom()
        return room

    def _require_member(self, room_id: str, participant_id: str) -> Participant:
        participant = self._require_room(room_id).participants.get(participant_id)
        if participant is None:
            raise ParticipantNotFound()
        return participant

    def _require_host(self, room: Room, participant_id: str, message: str) -> Participant:
        participant = room.participants.get(participant_id)
        if participant is None:
            raise NotInRoom()
        if not participant.is_host:
            raise PermissionDenied(message)
        return participant

    def _require_chat(self, room_id: str, participant_id: str) -> Participant:
        room = self._require_room(room_id)
        if not room.settings.allow_chat:
            raise PermissionDenied("Chat is disabled in this room")
        participant = room.participants.get(participant_id)
        if participant is None:
            raise NotInRoom()
        return participant

    def _room_sessions(self, room_id: str, exclude: str | None = None) -> Iterable[SignalingSession]:
        return [
            session
            for session in self._sessions.values()
            if session.room_id == room_id and session.session_id != exclude
        ]

    async def _send(self, session: SignalingSession, event: ev.OutboundEvent) -> None:
        try:
            await session.send(event.dump())
        except Exception as exc:  # noqa: BLE001 - a dead socket is cleaned up by its own disconnect
            logger.warning("Failed sending %s to session %s: %s", event.type, session.session_id, exc)

    async def _send_to(self, room_id: str, participant_id: str, event: ev.OutboundEvent) -> None:
        target = self._sessions.get(participant_id)
        if target is None or target.room_id != room_id:
            raise ParticipantNotFound()
        await self._send(target, event)

    async def _broadcast(self, room_id: str, event: ev.OutboundEvent, exclude: str | None = None) -> None:
        recipients = list(self._room_sessions(room_id, exclude))
        if recipients:
            await asyncio.gather(*(self._send(session, event) for session in recipients))

    async def _close(self, session: SignalingSession) -> None:
        if session.close is None:
            return
        try:
            await session.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed closing session %s: %s", session.session_id, exc)
