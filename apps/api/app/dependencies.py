"""FastAPI dependencies resolving services and enforcing per-address rate limits."""
from __future__ import annotations

from fastapi import Depends
from starlette.requests import HTTPConnection

from .services.container import Services
from .services.peers import PeerConnectionTracker
from .services.registry import ConnectionRegistry
from .services.signaling import SignalingDispatcher


def get_services(connection: HTTPConnection) -> Services:
    return connection.app.state.services


def get_registry(services: Services = Depends(get_services)) -> ConnectionRegistry:
    return services.registry


def get_tracker(services: Services = Depends(get_services)) -> PeerConnectionTracker:
    return services.tracker


def get_dispatcher(services: Services = Depends(get_services)) -> SignalingDispatcher:
    return services.dispatcher


def client_address(connection: HTTPConnection) -> str:
    return connection.client.host if connection.client else "unknown"


def limit_api(
    services: Services = Depends(get_services),
    address: str = Depends(client_address),
) -> None:
    """Admin API budget: raises ``RateLimited`` once the address spends it."""

    services.rate_limiter.hit(
        f"api:{address}",
        services.settings.api_rate_limit,
        services.settings.api_rate_window_seconds,
    )


def limit_room_creation(
    services: Services = Depends(get_services),
    address: str = Depends(client_address),
) -> None:
    services.rate_limiter.hit(
        f"rooms:{address}",
        services.settings.room_creation_rate_limit,
        services.settings.room_creation_rate_window_seconds,
    )
