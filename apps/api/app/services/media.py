"""Canonical per-participant media state shared by the room registry and peer tracker."""
from __future__ import annotations

from typing import Dict, Optional

from ..models.room import MediaState


class MediaStateTable:
    """Single source of truth for participant media flags."""

    def __init__(self) -> None:
        self._states: Dict[str, MediaState] = {}

    def ensure(self, participant_id: str) -> MediaState:
        """Return the participant's state, creating the default one on first use."""

        state = self._states.get(participant_id)
        if state is None:
            state = MediaState()
            self._states[participant_id] = state
        return state

    def get(self, participant_id: str) -> Optional[MediaState]:
        return self._states.get(participant_id)

    def discard(self, participant_id: str) -> None:
        self._states.pop(participant_id, None)

    def __len__(self) -> int:
        return len(self._states)
