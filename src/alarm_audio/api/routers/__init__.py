"""Alarm audio API routers.

- alarm_audio: queue trigger, single-alarm generation and health check
- queue: queue status and stale claim reconciliation
"""

from alarm_audio.api.routers.alarm_audio import router as alarm_audio_router
from alarm_audio.api.routers.queue import router as queue_router

__all__ = [
    "alarm_audio_router",
    "queue_router",
]
