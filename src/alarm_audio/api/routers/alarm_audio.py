"""Alarm audio generation endpoints.

POST /api/generate-alarm-audio either triggers queue processing (no alarmId)
or generates audio for one alarm synchronously. GET on the same path is a
health check.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from alarm_audio.api.dependencies import Pipeline
from alarm_audio.api.middleware.errors import (
    NotFoundError,
    ServiceUnavailableError,
    ValidationAPIError,
)
from alarm_audio.api.middleware.request_id import get_request_id
from alarm_audio.api.schemas.alarm_audio import (
    FunctionHealthResponse,
    GenerateAlarmAudioRequest,
    QueueProcessingResponse,
)
from alarm_audio.services.alarm_audio import AlarmNotFoundError
from alarm_audio.services.audio_queue import QueueError
from alarm_audio.services.event_log import EventType

if TYPE_CHECKING:
    import uuid

    from alarm_audio.services.pipeline import AudioPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["alarm-audio"])

FUNCTION_NAME = "generate-alarm-audio"


async def _parse_request(request: Request) -> GenerateAlarmAudioRequest:
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError as e:
        raise ValidationAPIError("Invalid JSON in request body") from e

    if not isinstance(body, dict):
        raise ValidationAPIError("Request body must be a JSON object")

    try:
        return GenerateAlarmAudioRequest.model_validate(body)
    except ValidationError as e:
        raise ValidationAPIError(
            "Invalid request body",
            detail={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


async def _process_queue(pipeline: AudioPipeline) -> JSONResponse:
    try:
        result = await pipeline.trigger.trigger()
    except QueueError as e:
        raise ServiceUnavailableError(
            "Queue is temporarily unavailable, nothing was claimed",
            error="queue_unavailable",
            detail={"queuedCount": 0},
        ) from e

    if not result.queue_empty:
        await pipeline.event_log.log_event(
            EventType.QUEUE_PROCESSING_STARTED,
            None,
            {
                "queued_count": result.queued_count,
                "estimated_time": result.estimated_time,
                "processing_mode": result.processing_mode,
                "request_id": get_request_id(),
            },
        )

    response = QueueProcessingResponse(
        success=True,
        message=result.message,
        queued_count=result.queued_count,
        estimated_time=result.estimated_time,
        queue_empty=result.queue_empty,
        processing_mode=result.processing_mode,
    )
    return JSONResponse(status_code=200, content=response.model_dump(by_alias=True))


async def _generate_for_alarm(
    pipeline: AudioPipeline,
    alarm_id: uuid.UUID,
    force_regenerate: bool,
) -> JSONResponse:
    logger.info(
        "Audio generation requested: alarm_id=%s, force_regenerate=%s",
        alarm_id,
        force_regenerate,
    )
    await pipeline.event_log.log_event(
        EventType.ALARM_AUDIO_GENERATION_STARTED,
        None,
        {
            "alarm_id": str(alarm_id),
            "force_regenerate": force_regenerate,
            "request_id": get_request_id(),
        },
    )

    try:
        result = await pipeline.worker.generate_for_alarm(alarm_id, force_regenerate)
    except AlarmNotFoundError as e:
        raise NotFoundError("Alarm", str(alarm_id)) from e

    await pipeline.event_log.log_event(
        EventType.ALARM_AUDIO_GENERATION_COMPLETED,
        result.user_id,
        {
            "alarm_id": str(alarm_id),
            "success": result.success,
            "generated_clips": len(result.generated_clips),
            "failed_clips": len(result.failed_clips),
            "request_id": get_request_id(),
        },
    )

    # 207: the request completed but no clip could be generated
    status_code = 200 if result.success else 207
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/generate-alarm-audio", response_model=FunctionHealthResponse)
async def generate_alarm_audio_health(request: Request) -> FunctionHealthResponse:
    """Health check for the generation endpoint."""
    return FunctionHealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=request.app.version,
        function=FUNCTION_NAME,
    )


@router.post("/generate-alarm-audio")
async def generate_alarm_audio(request: Request, pipeline: Pipeline) -> JSONResponse:
    """Process the queue, or generate audio for the alarm in the body.

    Responses:
        200: Queue processing started (or queue empty), or audio generated.
        207: Alarm processed but audio generation failed.
        400: Body is not a JSON object.
        404: Alarm not found.
        503: Queue store unavailable.
    """
    payload = await _parse_request(request)
    if payload.alarm_id is None:
        return await _process_queue(pipeline)
    return await _generate_for_alarm(pipeline, payload.alarm_id, payload.force_regenerate)
