"""FastAPI application for the room signaling service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .core.config import Settings, settings as default_settings
from .core.logging import configure_logging
from .routers import rooms, rtc
from .services.container import build_services
from .services.errors import RateLimited, SignalingError

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its own, isolated service graph."""

    settings = settings or default_settings
    configure_logging(settings.log_level)
    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        services.start()
        logger.info("Signaling service started (env=%s)", settings.app_env)
        try:
            yield
        finally:
            await services.stop()
            logger.info("Signaling service stopped")

    app = FastAPI(title="Room Signaling API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(SignalingError)
    async def signaling_error_handler(request: Request, exc: SignalingError) -> JSONResponse:
        headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
        if exc.status_code >= 500:
            logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message},
            headers=headers,
        )

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok"}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    app.include_router(rooms.router, prefix="/api", tags=["rooms"])
    app.include_router(rtc.router, prefix="/api/rtc", tags=["rtc"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting server on %s:%s (reload=%s)", default_settings.host, default_settings.port, default_settings.reload)
    uvicorn.run("app.main:app", host=default_settings.host, port=default_settings.port, reload=default_settings.reload)
