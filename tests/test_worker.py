"""Tests for the standalone queue worker.

Tests cover:
- Configuration from settings and environment variables
- One claim/dispatch cycle and its counters
- Stale claim sweeps
- The polling loop, immediate re-polling after a full batch and graceful shutdown
- Signal handling
"""

import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from alarm_audio.services.audio_queue import QueueClaimError
from alarm_audio.services.dispatcher import DispatchResult
from alarm_audio.services.event_log import EventType
from alarm_audio.services.storage import StorageError
from alarm_audio.services.trigger import TriggerResult
from alarm_audio.worker import main as worker_main
from alarm_audio.worker.main import Worker, WorkerConfig, get_config_from_env

EMPTY = TriggerResult(queued_count=0, estimated_time=0, processing_mode="sync")


@pytest.fixture
def mock_queue():
    with patch("alarm_audio.worker.main.AudioQueueService") as service_cls:
        queue = MagicMock()
        queue.reclaim_stale_items = AsyncMock(return_value=(0, 0))
        service_cls.return_value = queue
        yield queue


@pytest.fixture
def worker(test_settings, fake_pipeline, session_factory):
    fake_pipeline.trigger.trigger.return_value = EMPTY
    config = WorkerConfig(worker_id="worker-test", poll_interval=0.01, ensure_bucket=False)
    return Worker(config, test_settings, pipeline=fake_pipeline, session_factory=session_factory)


class TestWorkerConfig:
    def test_defaults(self):
        config = WorkerConfig()

        assert config.worker_id.startswith("worker-")
        assert config.poll_interval == 5.0
        assert config.stale_claim_seconds == 900

    def test_from_env(self, test_settings):
        env = {
            "WORKER_ID": "worker-env",
            "WORKER_POLL_INTERVAL": "2.5",
            "WORKER_SWEEP_INTERVAL": "30",
        }
        with patch.dict(os.environ, env):
            config = get_config_from_env(test_settings)

        assert config.worker_id == "worker-env"
        assert config.poll_interval == 2.5
        assert config.sweep_interval == 30.0
        assert config.stale_claim_seconds == test_settings.queue.stale_claim_seconds


class TestRunOnce:
    """Tests for a single claim/dispatch cycle."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, worker, fake_pipeline):
        result = await worker.run_once()

        assert result.queue_empty
        fake_pipeline.event_log.log_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_counts_outcomes(self, worker, fake_pipeline):
        fake_pipeline.trigger.trigger.return_value = TriggerResult(
            queued_count=3,
            estimated_time=4,
            processing_mode="sync",
            dispatch_result=DispatchResult(processed_count=3, success_count=2, failed_count=1),
        )

        await worker.run_once()

        assert worker.items_processed == 3
        assert worker.items_succeeded == 2
        assert worker.items_failed == 1
        event_type, _, meta = fake_pipeline.event_log.log_event.call_args[0]
        assert event_type == EventType.QUEUE_PROCESSING_FINISHED
        assert meta["success_count"] == 2
        assert meta["failed_count"] == 1

    @pytest.mark.asyncio
    async def test_background_dispatch_logs_start(self, worker, fake_pipeline):
        fake_pipeline.trigger.trigger.return_value = TriggerResult(
            queued_count=3, estimated_time=4, processing_mode="async"
        )

        await worker.run_once()

        assert worker.items_processed == 0
        event_type, _, meta = fake_pipeline.event_log.log_event.call_args[0]
        assert event_type == EventType.QUEUE_PROCESSING_STARTED
        assert meta["estimated_time"] == 4

    @pytest.mark.asyncio
    async def test_claim_failure(self, worker, fake_pipeline):
        fake_pipeline.trigger.trigger.side_effect = QueueClaimError("store down")

        assert await worker.run_once() is None


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_commits_and_logs(self, worker, mock_queue, mock_session, fake_pipeline):
        mock_queue.reclaim_stale_items.return_value = (2, 1)

        assert await worker.sweep_stale_claims() == (2, 1)

        mock_queue.reclaim_stale_items.assert_awaited_once_with(900)
        mock_session.commit.assert_awaited_once()
        event_type = fake_pipeline.event_log.log_event.call_args[0][0]
        assert event_type == EventType.QUEUE_RECONCILED

    @pytest.mark.asyncio
    async def test_nothing_stale(self, worker, mock_queue, fake_pipeline):
        assert await worker.sweep_stale_claims() == (0, 0)
        fake_pipeline.event_log.log_event.assert_not_called()


class TestWorkerLoop:
    """Tests for start/stop and polling behavior."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, worker, fake_pipeline, mock_queue):
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert fake_pipeline.trigger.trigger.await_count >= 1
        mock_queue.reclaim_stale_items.assert_awaited()
        fake_pipeline.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_full_batch_polls_again_immediately(self, worker, fake_pipeline, mock_queue):
        worker.config.poll_interval = 10.0
        full = TriggerResult(queued_count=50, estimated_time=20, processing_mode="sync")
        fake_pipeline.trigger.trigger.side_effect = [full, full, EMPTY, EMPTY]

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert fake_pipeline.trigger.trigger.await_count == 3

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, worker, fake_pipeline, mock_queue):
        mock_queue.reclaim_stale_items.side_effect = RuntimeError("unexpected")

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_ensure_bucket_failure_is_logged(self, worker, fake_pipeline, mock_queue):
        worker.config.ensure_bucket = True
        fake_pipeline.storage.ensure_bucket.side_effect = StorageError("no access")

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.02)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)

        fake_pipeline.storage.ensure_bucket.assert_called_once()

    def test_uptime_before_start(self, worker):
        assert worker._get_uptime() == "0s"


class TestSignalHandling:
    @pytest.fixture(autouse=True)
    def shutdown_event(self):
        event = asyncio.Event()
        with patch.object(worker_main, "_shutdown_event", event):
            yield event

    @pytest.mark.asyncio
    async def test_signal_sets_shutdown_event(self, shutdown_event):
        worker_main._handle_shutdown(signal.SIGTERM)

        assert shutdown_event.is_set()

    def test_without_event_is_noop(self):
        with patch.object(worker_main, "_shutdown_event", None):
            worker_main._handle_shutdown(signal.SIGINT)

    def test_handlers_installed_on_loop(self):
        loop = MagicMock()

        worker_main._install_signal_handlers(loop)

        loop.add_signal_handler.assert_any_call(
            signal.SIGTERM, worker_main._handle_shutdown, signal.SIGTERM
        )
        loop.add_signal_handler.assert_any_call(
            signal.SIGINT, worker_main._handle_shutdown, signal.SIGINT
        )

    @pytest.mark.asyncio
    async def test_real_signal_triggers_shutdown(self, shutdown_event):
        loop = asyncio.get_running_loop()
        worker_main._install_signal_handlers(loop)
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(shutdown_event.wait(), timeout=1.0)
        finally:
            loop.remove_signal_handler(signal.SIGTERM)
            loop.remove_signal_handler(signal.SIGINT)

        assert shutdown_event.is_set()
