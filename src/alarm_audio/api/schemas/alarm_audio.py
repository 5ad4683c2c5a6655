"""Pydantic schemas for the alarm audio endpoints.

Field names are exposed in camelCase on the wire to match the mobile client.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateAlarmAudioRequest(CamelModel):
    """Body of POST /api/generate-alarm-audio.

    Without alarmId the request processes the queue; with it, audio is
    generated for that alarm only.
    """

    alarm_id: UUID | None = Field(None, description="Alarm to generate audio for")
    force_regenerate: bool = Field(
        False, description="Regenerate even if ready audio already exists"
    )


class QueueProcessingResponse(CamelModel):
    """Result of a queue processing trigger."""

    success: bool = True
    message: str
    queued_count: int = Field(..., ge=0, description="Number of items claimed")
    estimated_time: int = Field(..., ge=0, description="Estimated minutes to finish")
    queue_empty: bool
    processing_mode: str = Field(..., description="async (background) or sync")


class FunctionHealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    function: str


class QueueStatusResponse(CamelModel):
    """Number of queue items per status."""

    counts: dict[str, int]
    pending_due: int = Field(..., description="Pending items whose scheduled time has passed")
    total: int


class ReconcileResponse(CamelModel):
    """Outcome of a stale claim sweep."""

    requeued: int
    failed: int
    stale_after_seconds: int
