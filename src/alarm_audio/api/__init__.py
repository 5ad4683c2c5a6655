"""Alarm audio API service.

FastAPI application providing:
- POST /api/generate-alarm-audio: queue trigger or single-alarm generation
- GET /api/generate-alarm-audio: endpoint health check
- /api/queue/*: queue status and stale claim reconciliation
- GET /health: container health check

This module provides the app factory used by the ASGI entry point and tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from alarm_audio.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from alarm_audio.api.routers import alarm_audio_router, queue_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from alarm_audio.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "Alarm Audio API"
API_DESCRIPTION = """
Generates spoken wake-up briefings for scheduled alarms.

Calling `POST /api/generate-alarm-audio` without an `alarmId` claims a batch
of due items from the audio generation queue and processes it in the
background. With an `alarmId` the audio for that alarm is generated
synchronously.
"""

# Seconds to wait for background dispatches on shutdown
SHUTDOWN_DRAIN_TIMEOUT = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield

    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        await pipeline.aclose(drain_timeout=SHUTDOWN_DRAIN_TIMEOUT)
        app.state.pipeline = None

    from alarm_audio.db import close_engine

    await close_engine()
    logger.info("Alarm audio API shut down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. When omitted, settings are
            loaded from the environment on first use.

    Returns:
        Configured FastAPI application.

    Example:
        app = create_app()

        # For testing, with a prebuilt pipeline
        app = create_app(test_settings)
        app.state.pipeline = fake_pipeline
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.pipeline = None

    _add_middleware(app, settings)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy"}

    logger.info("Alarm audio API application created (version=%s)", version)
    return app


def _add_middleware(app: FastAPI, settings: Settings | None) -> None:
    # Last added is outermost: the request ID must be set before errors are rendered
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)

    allowed_origins = ["*"]
    if settings and settings.is_production:
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
        expose_headers=["X-Request-ID"],
    )


def _include_routers(app: FastAPI) -> None:
    app.include_router(alarm_audio_router, prefix="/api")
    app.include_router(queue_router, prefix="/api")
