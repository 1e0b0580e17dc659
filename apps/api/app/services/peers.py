"""Per-room peer connection tracking for WebRTC negotiation.

Links are stored once per unordered participant pair. The public connection
identifier keeps the direction of the most recent offer (``"<from>-<to>"``),
but offer, answer, and teardown all look the link up through the same pair
key, so the answering side never has to guess which bucket owns it.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.room import MediaKind, MediaState
from .media import MediaStateTable

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]

DEFAULT_ICE_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)


class LinkStatus(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"


def pair_key(a: str, b: str) -> PairKey:
    first, second = sorted((a, b))
    return first, second


@dataclass(slots=True)
class PeerLink:
    connection_id: str
    initiator: str
    target: str
    status: LinkStatus
    created_at: float

    def peer_of(self, participant_id: str) -> str:
        return self.target if participant_id == self.initiator else self.initiator


@dataclass(slots=True)
class PeerEntry:
    session_id: str | None
    media: MediaState
    is_initiator: bool = False


@dataclass(slots=True)
class PendingOffer:
    room_id: str
    from_id: str
    to_id: str
    offer: Any
    timestamp: float


@dataclass
class _RoomPeers:
    entries: Dict[str, PeerEntry] = field(default_factory=dict)
    links: Dict[PairKey, PeerLink] = field(default_factory=dict)

    def peers_of(self, participant_id: str) -> Dict[str, PeerLink]:
        return {
            link.peer_of(participant_id): link
            for key, link in self.links.items()
            if participant_id in key
        }


class PeerConnectionTracker:
    """Track who offered whom in each room and stage offers awaiting answers."""

    def __init__(
        self,
        media: MediaStateTable | None = None,
        *,
        ice_servers: list[str] | tuple[str, ...] = DEFAULT_ICE_SERVERS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._media = media if media is not None else MediaStateTable()
        self._ice_servers = [{"urls": url} for url in ice_servers]
        self._clock = clock
        self._rooms: Dict[str, _RoomPeers] = {}
        self._pending: Dict[str, PendingOffer] = {}

    def add_participant(self, room_id: str, participant_id: str, session_id: str | None = None) -> PeerEntry:
        peers = self._rooms.get(room_id)
        if peers is None:
            peers = self._rooms[room_id] = _RoomPeers()
            logger.info("WebRTC connections initialized for room: %s", room_id)

        entry = peers.entries.get(participant_id)
        if entry is None:
            entry = PeerEntry(session_id=session_id, media=self._media.ensure(participant_id))
            peers.entries[participant_id] = entry
            logger.info("Participant %s added to WebRTC room %s", participant_id, room_id)
        return entry

    def remove_participant(self, room_id: str, participant_id: str) -> bool:
        """Forget a participant with every link and pending offer that involves them."""

        peers = self._rooms.get(room_id)
        if peers is None or participant_id not in peers.entries:
            return False

        del peers.entries[participant_id]
        for key in [key for key in peers.links if participant_id in key]:
            link = peers.links.pop(key)
            self._pending.pop(link.connection_id, None)
        stale = [
            connection_id
            for connection_id, pending in self._pending.items()
            if pending.room_id == room_id and participant_id in (pending.from_id, pending.to_id)
        ]
        for connection_id in stale:
            self._pending.pop(connection_id, None)

        if not peers.entries:
            self._rooms.pop(room_id, None)
            logger.info("WebRTC room %s cleaned up (empty)", room_id)
        logger.info("Participant %s removed from WebRTC room %s", participant_id, room_id)
        return True

    def is_tracked(self, room_id: str, participant_id: str) -> bool:
        peers = self._rooms.get(room_id)
        return peers is not None and participant_id in peers.entries

    def get_link(self, room_id: str, a: str, b: str) -> Optional[PeerLink]:
        peers = self._rooms.get(room_id)
        if peers is None:
            return None
        return peers.links.get(pair_key(a, b))

    def create_peer_link(self, room_id: str, from_id: str, to_id: str) -> Optional[str]:
        peers = self._rooms.get(room_id)
        if peers is None or from_id == to_id:
            return None
        initiator = peers.entries.get(from_id)
        if initiator is None or to_id not in peers.entries:
            return None

        key = pair_key(from_id, to_id)
        previous = peers.links.get(key)
        if previous is not None:
            self._pending.pop(previous.connection_id, None)

        connection_id = f"{from_id}-{to_id}"
        peers.links[key] = PeerLink(
            connection_id=connection_id,
            initiator=from_id,
            target=to_id,
            status=LinkStatus.CONNECTING,
            created_at=self._clock(),
        )
        initiator.is_initiator = True
        logger.info("Peer connection created: %s in room %s", connection_id, room_id)
        return connection_id

    def handle_offer(self, room_id: str, from_id: str, to_id: str, offer: Any) -> Optional[str]:
        connection_id = self.create_peer_link(room_id, from_id, to_id)
        if connection_id is None:
            return None
        self._pending[connection_id] = PendingOffer(
            room_id=room_id,
            from_id=from_id,
            to_id=to_id,
            offer=offer,
            timestamp=self._clock(),
        )
        logger.info("Offer stored for connection: %s", connection_id)
        return connection_id

    def handle_answer(self, room_id: str, from_id: str, to_id: str, answer: Any) -> bool:
        """Mark the link offered by ``to_id`` to ``from_id`` as connected."""

        link = self.get_link(room_id, from_id, to_id)
        if link is None or link.initiator != to_id or link.target != from_id:
            return False
        link.status = LinkStatus.CONNECTED
        self._pending.pop(link.connection_id, None)
        logger.info("Answer processed for connection: %s", link.connection_id)
        return True

    def update_media_state(
        self, room_id: str, participant_id: str, kind: MediaKind, enabled: bool
    ) -> Optional[dict[str, bool]]:
        peers = self._rooms.get(room_id)
        entry = peers.entries.get(participant_id) if peers else None
        if entry is None:
            logger.error("Failed to update media state for %s in room %s: participant not found", participant_id, room_id)
            return None
        entry.media.set(kind, enabled)
        logger.info("Media state updated for %s: %s -> %s", participant_id, MediaKind(kind).value, enabled)
        return entry.media.as_dict()

    def room_snapshot(self, room_id: str) -> Optional[dict[str, Any]]:
        peers = self._rooms.get(room_id)
        if peers is None:
            return None

        users: dict[str, Any] = {}
        for participant_id, entry in peers.entries.items():
            links = peers.peers_of(participant_id)
            users[participant_id] = {
                "session_id": entry.session_id,
                "is_initiator": entry.is_initiator,
                "peer_count": len(links),
                "media_state": entry.media.as_dict(),
                "peers": {
                    peer_id: {"connection_id": link.connection_id, "status": link.status.value}
                    for peer_id, link in links.items()
                },
            }
        return {
            "room_id": room_id,
            "user_count": len(peers.entries),
            "users": users,
            "total_connections": len(peers.links),
        }

    def ice_servers(self) -> list[dict[str, str]]:
        return [dict(server) for server in self._ice_servers]

    def sweep_expired_offers(self, max_age_seconds: float = 30.0) -> int:
        """Drop stale pending offers and retract links that never got an answer."""

        now = self._clock()
        expired = [
            connection_id
            for connection_id, pending in self._pending.items()
            if now - pending.timestamp > max_age_seconds
        ]
        for connection_id in expired:
            pending = self._pending.pop(connection_id)
            link = self.get_link(pending.room_id, pending.from_id, pending.to_id)
            if link is not None and link.connection_id == connection_id and link.status is LinkStatus.CONNECTING:
                self._rooms[pending.room_id].links.pop(pair_key(pending.from_id, pending.to_id), None)
            logger.info("Expired offer cleaned up: %s", connection_id)
        return len(expired)

    def pending_offer(self, connection_id: str) -> Optional[PendingOffer]:
        return self._pending.get(connection_id)

    def stats(self) -> dict[str, Any]:
        rooms = {
            room_id: {"user_count": len(peers.entries), "connection_count": len(peers.links)}
            for room_id, peers in self._rooms.items()
        }
        return {
            "total_rooms": len(self._rooms),
            "total_users": sum(item["user_count"] for item in rooms.values()),
            "total_connections": sum(item["connection_count"] for item in rooms.values()),
            "pending_offers": len(self._pending),
            "rooms": rooms,
        }
