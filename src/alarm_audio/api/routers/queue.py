"""Queue inspection and maintenance endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.api.dependencies import AppSettings, DbSession, Pipeline
from alarm_audio.api.middleware.errors import ServiceUnavailableError
from alarm_audio.api.middleware.request_id import get_request_id
from alarm_audio.api.schemas.alarm_audio import QueueStatusResponse, ReconcileResponse
from alarm_audio.services.audio_queue import AudioQueueService, QueueError
from alarm_audio.services.event_log import EventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/status", response_model=QueueStatusResponse)
async def queue_status(session: DbSession) -> QueueStatusResponse:
    """Number of queue items in each status."""
    queue = AudioQueueService(session)
    try:
        counts = await queue.get_status_counts()
        pending_due = await queue.get_pending_count()
    except (QueueError, SQLAlchemyError) as e:
        raise ServiceUnavailableError(
            "Queue is temporarily unavailable", error="queue_unavailable"
        ) from e

    return QueueStatusResponse(
        counts=counts,
        pending_due=pending_due,
        total=sum(counts.values()),
    )


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_queue(
    session: DbSession,
    settings: AppSettings,
    pipeline: Pipeline,
) -> ReconcileResponse:
    """Return orphaned processing items to pending, or fail them when out of retries."""
    stale_after = settings.queue.stale_claim_seconds
    queue = AudioQueueService(session)
    try:
        requeued, failed = await queue.reclaim_stale_items(stale_after)
        await session.commit()
    except (QueueError, SQLAlchemyError) as e:
        raise ServiceUnavailableError(
            "Queue is temporarily unavailable", error="queue_unavailable"
        ) from e

    if requeued or failed:
        await pipeline.event_log.log_event(
            EventType.QUEUE_RECONCILED,
            None,
            {"requeued": requeued, "failed": failed, "request_id": get_request_id()},
        )
    return ReconcileResponse(requeued=requeued, failed=failed, stale_after_seconds=stale_after)
