"""Alarm audio queue worker.

Polls the audio generation queue and runs claimed batches through the
generation pipeline, as an alternative to the HTTP trigger.

Usage:
    python -m alarm_audio.worker
"""

from alarm_audio.worker.main import Worker, WorkerConfig, run

__all__ = ["Worker", "WorkerConfig", "run"]
