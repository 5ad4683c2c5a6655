"""Application event log writer.

Events are analytics, not control flow: a failed write is logged and
otherwise ignored.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from alarm_audio.db.models.audio import EventLog

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types written to the logs table."""

    QUEUE_PROCESSING_STARTED = "queue_processing_started"
    QUEUE_PROCESSING_FINISHED = "queue_processing_finished"
    ALARM_AUDIO_GENERATION_STARTED = "alarm_audio_generation_started"
    ALARM_AUDIO_GENERATION_COMPLETED = "alarm_audio_generation_completed"
    COMBINED_AUDIO_GENERATED = "combined_audio_generated"
    QUEUE_RECONCILED = "queue_reconciled"


class EventLogService:
    """Writes events using a dedicated short-lived session per event."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log_event(
        self,
        event_type: EventType | str,
        user_id: uuid.UUID | None = None,
        meta: dict[str, Any] | None = None,
    ) -> bool:
        """Record an event. Never raises.

        Returns:
            True if the event was stored.
        """
        event_value = event_type.value if isinstance(event_type, EventType) else event_type
        try:
            async with self._session_factory() as session:
                session.add(EventLog(event_type=event_value, user_id=user_id, meta=meta))
                await session.commit()
        except Exception:
            logger.exception("Failed to write event log: event_type=%s", event_value)
            return False
        return True
