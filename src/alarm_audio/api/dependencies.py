"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from alarm_audio.core.config import Settings
from alarm_audio.services.pipeline import AudioPipeline, build_pipeline


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session from the application's session factory."""
    from alarm_audio.db import get_async_session

    async with get_async_session() as session:
        yield session


def get_app_settings(request: Request) -> Settings:
    """Settings passed to create_app, or the cached environment settings."""
    settings = request.app.state.settings
    if settings is None:
        from alarm_audio.core.settings import get_settings

        settings = get_settings()
        request.app.state.settings = settings
    return settings


def get_pipeline(request: Request) -> AudioPipeline:
    """The application-wide pipeline, built on first use.

    The trigger inside it tracks background dispatches, so it must outlive
    individual requests.
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        from alarm_audio.db import get_session_factory

        pipeline = build_pipeline(get_app_settings(request), get_session_factory())
        request.app.state.pipeline = pipeline
    return pipeline


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Pipeline = Annotated[AudioPipeline, Depends(get_pipeline)]
