"""Wiring of the audio generation pipeline from settings.

The API and the standalone worker build the same object graph: OpenAI
clients with their own rate limiters, storage, the per-item worker, the
status reporter, the dispatcher and the trigger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from alarm_audio.services.alarm_audio import AlarmAudioWorker
from alarm_audio.services.dispatcher import BatchDispatcher
from alarm_audio.services.event_log import EventLogService
from alarm_audio.services.rate_limit import RateLimiter
from alarm_audio.services.script_generator import ScriptGenerator
from alarm_audio.services.speech import SpeechSynthesizer
from alarm_audio.services.status_reporter import StatusReporter
from alarm_audio.services.storage import AudioStorage
from alarm_audio.services.trigger import QueueTrigger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from alarm_audio.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class AudioPipeline:
    """The services that make up one running pipeline."""

    worker: AlarmAudioWorker
    dispatcher: BatchDispatcher
    trigger: QueueTrigger
    event_log: EventLogService
    script_generator: ScriptGenerator
    synthesizer: SpeechSynthesizer
    storage: AudioStorage

    async def aclose(self, drain_timeout: float | None = None) -> None:
        """Finish or cancel background dispatches, then release HTTP clients."""
        await self.trigger.drain(timeout=drain_timeout)
        await self.script_generator.aclose()
        await self.synthesizer.aclose()


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    background: bool | None = None,
) -> AudioPipeline:
    """Build the pipeline.

    Args:
        settings: Application settings.
        session_factory: Factory for short-lived database sessions.
        background: Overrides settings.queue.background_dispatch.
    """
    queue = settings.queue
    openai = settings.openai

    script_generator = ScriptGenerator.from_settings(
        openai, rate_limiter=RateLimiter(openai.requests_per_minute, 60.0)
    )
    synthesizer = SpeechSynthesizer.from_settings(
        openai, rate_limiter=RateLimiter(openai.requests_per_minute, 60.0)
    )
    storage = AudioStorage.from_settings(settings.storage)
    event_log = EventLogService(session_factory)

    worker = AlarmAudioWorker(
        session_factory,
        script_generator,
        synthesizer,
        storage,
        timeout_seconds=queue.item_timeout_seconds,
        audio_expiration_hours=queue.audio_expiration_hours,
        event_log=event_log,
    )
    reporter = StatusReporter(session_factory)
    dispatcher = BatchDispatcher(
        worker,
        reporter,
        max_concurrent=queue.max_concurrent,
        claim_keeper=reporter,
    )
    trigger = QueueTrigger(
        session_factory,
        dispatcher,
        batch_size=queue.batch_size,
        max_concurrent=queue.max_concurrent,
        claim_order=queue.claim_order,
        minutes_per_chunk=queue.minutes_per_chunk,
        background=queue.background_dispatch if background is None else background,
    )

    logger.info(
        "Audio pipeline built: batch_size=%d, max_concurrent=%d, background=%s",
        trigger.batch_size,
        trigger.max_concurrent,
        trigger.background,
    )
    return AudioPipeline(
        worker=worker,
        dispatcher=dispatcher,
        trigger=trigger,
        event_log=event_log,
        script_generator=script_generator,
        synthesizer=synthesizer,
        storage=storage,
    )
