"""Fixed-window request counters keyed by source address."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

from .errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Reject callers that exceed ``limit`` hits per window instead of queuing them."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        try:
            self.hit(key, limit, window_seconds)
        except RateLimited:
            return False
        return True

    def hit(self, key: str, limit: int, window_seconds: float) -> None:
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            self._windows[key] = _Window(count=1, reset_at=now + window_seconds)
            return

        if window.count >= limit:
            logger.warning("Rate limit exceeded for %s", key)
            raise RateLimited(retry_after=window.reset_at - now)
        window.count += 1

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            self._windows.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
