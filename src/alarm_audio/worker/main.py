"""Standalone queue worker.

Runs the same claim/dispatch pipeline as the HTTP trigger, in a polling loop:
- Claims a batch of due queue items and processes it synchronously
- Polls again right away while batches come back full
- Periodically returns stale claims to the queue
- Handles graceful shutdown via SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NoReturn

from alarm_audio.db import create_session_factory
from alarm_audio.services.audio_queue import AudioQueueService, QueueError
from alarm_audio.services.event_log import EventType
from alarm_audio.services.pipeline import build_pipeline
from alarm_audio.services.storage import StorageError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from alarm_audio.core.config import Settings
    from alarm_audio.services.pipeline import AudioPipeline
    from alarm_audio.services.trigger import TriggerResult

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Configuration for the worker process.

    Attributes:
        worker_id: Identifier used in logs.
        poll_interval: Seconds between polls when the queue is drained.
        sweep_interval: Seconds between stale claim sweeps.
        stale_claim_seconds: Age after which a processing item is orphaned.
        shutdown_timeout: Seconds to wait for graceful shutdown.
        ensure_bucket: Create the audio bucket on startup if missing.
    """

    worker_id: str = field(default_factory=lambda: f"worker-{uuid.uuid4().hex[:8]}")
    poll_interval: float = 5.0
    sweep_interval: float = 60.0
    stale_claim_seconds: int = 900
    shutdown_timeout: float = 30.0
    ensure_bucket: bool = True


class Worker:
    """Polls the audio generation queue and processes due items.

    Several workers (and the HTTP trigger) may run at once; the claim step
    guarantees each item is handed out once.

    Example:
        worker = Worker(WorkerConfig(), get_settings())
        await worker.start()
    """

    def __init__(
        self,
        config: WorkerConfig,
        settings: Settings,
        *,
        pipeline: AudioPipeline | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self._pipeline = pipeline
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = None
        self._shutdown_event = asyncio.Event()
        self._started_at: datetime | None = None
        self._last_sweep: float | None = None
        self._items_processed = 0
        self._items_succeeded = 0
        self._items_failed = 0

    @property
    def items_processed(self) -> int:
        return self._items_processed

    @property
    def items_succeeded(self) -> int:
        return self._items_succeeded

    @property
    def items_failed(self) -> int:
        return self._items_failed

    async def start(self) -> None:
        """Start the worker. Runs until stop() is called or a signal arrives."""
        self._started_at = datetime.now(UTC)
        logger.info("Worker starting: worker_id=%s", self.config.worker_id)

        if self._session_factory is None:
            self._engine, self._session_factory = create_session_factory(self.settings.database)
        if self._pipeline is None:
            self._pipeline = build_pipeline(
                self.settings, self._session_factory, background=False
            )

        if self.config.ensure_bucket:
            try:
                await asyncio.to_thread(self._pipeline.storage.ensure_bucket)
            except StorageError as e:
                logger.warning("Could not ensure audio bucket: %s", e)

        try:
            await self._run_loop()
        finally:
            await self._pipeline.aclose(drain_timeout=self.config.shutdown_timeout)
            if self._engine is not None:
                await self._engine.dispose()

            logger.info(
                "Worker stopped: worker_id=%s, processed=%d, succeeded=%d, failed=%d, uptime=%s",
                self.config.worker_id,
                self._items_processed,
                self._items_succeeded,
                self._items_failed,
                self._get_uptime(),
            )

    async def stop(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info("Worker shutdown requested: worker_id=%s", self.config.worker_id)
        self._shutdown_event.set()

    async def run_once(self) -> TriggerResult | None:
        """Claim and process one batch.

        Returns:
            The trigger result, or None if the queue was unavailable.
        """
        try:
            result = await self._pipeline.trigger.trigger()
        except QueueError as e:
            logger.warning("Queue claim failed: worker_id=%s, error=%s", self.config.worker_id, e)
            return None

        if result.queue_empty:
            return result

        meta: dict[str, Any] = {
            "queued_count": result.queued_count,
            "processing_mode": result.processing_mode,
            "worker_id": self.config.worker_id,
        }
        dispatched = result.dispatch_result
        if dispatched is None:
            meta["estimated_time"] = result.estimated_time
            await self._pipeline.event_log.log_event(
                EventType.QUEUE_PROCESSING_STARTED, None, meta
            )
            return result

        # The batch was processed inline, so report its outcome rather than its start
        self._items_processed += dispatched.processed_count
        self._items_succeeded += dispatched.success_count
        self._items_failed += dispatched.failed_count
        meta.update(dispatched.to_dict())
        await self._pipeline.event_log.log_event(
            EventType.QUEUE_PROCESSING_FINISHED, None, meta
        )
        return result

    async def sweep_stale_claims(self) -> tuple[int, int]:
        """Return orphaned processing items to the queue.

        Returns:
            Tuple of (requeued, failed) counts.
        """
        self._last_sweep = time.monotonic()
        async with self._session_factory() as session:
            queue = AudioQueueService(session)
            requeued, failed = await queue.reclaim_stale_items(self.config.stale_claim_seconds)
            await session.commit()

        if requeued or failed:
            logger.warning("Reclaimed stale queue items: requeued=%d, failed=%d", requeued, failed)
            await self._pipeline.event_log.log_event(
                EventType.QUEUE_RECONCILED,
                None,
                {"requeued": requeued, "failed": failed, "worker_id": self.config.worker_id},
            )
        return requeued, failed

    def _sweep_due(self) -> bool:
        if self._last_sweep is None:
            return True
        return time.monotonic() - self._last_sweep >= self.config.sweep_interval

    async def _run_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                if self._sweep_due():
                    await self.sweep_stale_claims()

                result = await self.run_once()

                # A full batch means more items are probably due
                if result is not None and result.queued_count >= self._pipeline.trigger.batch_size:
                    continue

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.poll_interval,
                    )

            except Exception as e:
                logger.exception("Error in worker loop: %s", e)
                await asyncio.sleep(1.0)

    def _get_uptime(self) -> str:
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"


_shutdown_event: asyncio.Event | None = None


def _handle_shutdown(signum: int) -> None:
    """Signal callback; runs on the event loop via add_signal_handler."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _install_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle_shutdown, sig)


def get_config_from_env(settings: Settings) -> WorkerConfig:
    """Build WorkerConfig from settings and environment variables.

    Environment variables:
        WORKER_ID: Worker identifier (auto-generated if not set)
        WORKER_POLL_INTERVAL: Seconds between polls (default: 5)
        WORKER_SWEEP_INTERVAL: Seconds between stale claim sweeps (default: 60)
        WORKER_SHUTDOWN_TIMEOUT: Seconds for graceful shutdown (default: 30)
    """
    return WorkerConfig(
        worker_id=os.environ.get("WORKER_ID", f"worker-{uuid.uuid4().hex[:8]}"),
        poll_interval=float(os.environ.get("WORKER_POLL_INTERVAL", "5.0")),
        sweep_interval=float(os.environ.get("WORKER_SWEEP_INTERVAL", "60")),
        stale_claim_seconds=settings.queue.stale_claim_seconds,
        shutdown_timeout=float(os.environ.get("WORKER_SHUTDOWN_TIMEOUT", "30")),
    )


async def _async_main(shutdown_event: asyncio.Event, settings: Settings) -> None:
    config = get_config_from_env(settings)
    worker = Worker(config, settings)
    worker_task = asyncio.create_task(worker.start())

    # Stop waiting if the worker dies on its own
    waiter = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait({worker_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    waiter.cancel()

    if worker_task.done():
        worker_task.result()
        return

    await worker.stop()
    try:
        await asyncio.wait_for(worker_task, timeout=config.shutdown_timeout)
    except TimeoutError:
        logger.warning("Worker did not stop within timeout, forcing shutdown")
        worker_task.cancel()


def run() -> NoReturn:
    """Run the worker process (alarm-audio-worker console script)."""
    from alarm_audio.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Alarm audio worker starting...")

    async def _run_with_event() -> None:
        global _shutdown_event
        _shutdown_event = asyncio.Event()
        _install_signal_handlers(asyncio.get_running_loop())
        await _async_main(_shutdown_event, settings)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("Alarm audio worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
