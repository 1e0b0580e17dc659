"""Construction of the per-process service graph."""
from __future__ import annotations

from dataclasses import dataclass, field

from ..core.config import Settings
from .media import MediaStateTable
from .peers import PeerConnectionTracker
from .rate_limit import RateLimiter
from .registry import ConnectionRegistry
from .scheduler import PeriodicTask
from .signaling import SignalingDispatcher


@dataclass
class Services:
    settings: Settings
    media: MediaStateTable
    registry: ConnectionRegistry
    tracker: PeerConnectionTracker
    rate_limiter: RateLimiter
    dispatcher: SignalingDispatcher
    tasks: list[PeriodicTask] = field(default_factory=list)

    def start(self) -> None:
        for task in self.tasks:
            task.start()

    async def stop(self) -> None:
        for task in self.tasks:
            await task.stop()


def build_services(settings: Settings) -> Services:
    """Wire the stores, the dispatcher, and their background sweeps."""

    media = MediaStateTable()
    registry = ConnectionRegistry(
        media,
        default_capacity=settings.room_default_capacity,
        max_capacity=settings.room_max_capacity,
    )
    tracker = PeerConnectionTracker(media, ice_servers=settings.ice_servers)
    rate_limiter = RateLimiter()
    dispatcher = SignalingDispatcher(
        registry,
        tracker,
        rate_limiter,
        event_rate_limit=settings.event_rate_limit,
        event_rate_window_seconds=settings.event_rate_window_seconds,
        offer_max_age_seconds=settings.offer_max_age_seconds,
    )
    tasks = [
        PeriodicTask("empty-room-sweep", settings.room_sweep_interval_seconds, dispatcher.sweep_rooms),
        PeriodicTask("expired-offer-sweep", settings.offer_sweep_interval_seconds, dispatcher.sweep_offers),
        PeriodicTask("rate-limit-sweep", settings.rate_limit_sweep_interval_seconds, rate_limiter.sweep),
    ]
    return Services(
        settings=settings,
        media=media,
        registry=registry,
        tracker=tracker,
        rate_limiter=rate_limiter,
        dispatcher=dispatcher,
        tasks=tasks,
    )
