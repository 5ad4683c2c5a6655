"""Tests for the queue trigger.

Tests cover:
- Completion estimates and response messages
- Empty queue: no dispatch is started
- Background (async) and synchronous dispatch modes
- Claim failures
- Draining and cancelling background dispatches on shutdown
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from alarm_audio.core.config import ClaimOrder
from alarm_audio.services.audio_queue import QueueClaimError
from alarm_audio.services.dispatcher import DispatchResult
from alarm_audio.services.trigger import QueueTrigger, TriggerResult, estimate_minutes
from tests.factories import make_claimed_item


@pytest.fixture
def mock_queue():
    with patch("alarm_audio.services.trigger.AudioQueueService") as service_cls:
        queue = MagicMock()
        queue.claim_batch = AsyncMock(return_value=[])
        service_cls.return_value = queue
        yield queue


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=DispatchResult())
    return dispatcher


class TestEstimateMinutes:
    def test_empty(self):
        assert estimate_minutes(0, 10) == 0

    def test_rounds_up_to_whole_chunks(self):
        assert estimate_minutes(50, 10, 4) == 20
        assert estimate_minutes(11, 10, 4) == 8
        assert estimate_minutes(1, 10, 4) == 4


class TestTriggerResult:
    def test_empty_message(self):
        result = TriggerResult(queued_count=0, estimated_time=0, processing_mode="async")

        assert result.queue_empty
        assert result.message == "No pending items in queue"

    def test_started_message(self):
        result = TriggerResult(queued_count=12, estimated_time=8, processing_mode="async")

        assert not result.queue_empty
        assert result.message == "Started processing 12 alarms (estimated 8 minutes)"


class TestQueueTrigger:
    """Tests for QueueTrigger.trigger."""

    @pytest.mark.asyncio
    async def test_empty_queue_starts_nothing(self, session_factory, dispatcher, mock_queue):
        trigger = QueueTrigger(session_factory, dispatcher)

        result = await trigger.trigger()

        assert result.queue_empty
        assert result.queued_count == 0
        assert result.estimated_time == 0
        assert trigger.pending_tasks == 0
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_uses_configuration(
        self, session_factory, mock_session, dispatcher, mock_queue
    ):
        trigger = QueueTrigger(
            session_factory, dispatcher, batch_size=25, claim_order=ClaimOrder.PRIORITY
        )

        await trigger.trigger()

        args, kwargs = mock_queue.claim_batch.call_args
        assert args[0] == 25
        assert kwargs["order"] == ClaimOrder.PRIORITY
        assert kwargs["claim_token"].startswith("claim-")
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_batch_size_override(self, session_factory, dispatcher, mock_queue):
        trigger = QueueTrigger(session_factory, dispatcher, batch_size=25)

        await trigger.trigger(batch_size=5)

        assert mock_queue.claim_batch.call_args[0][0] == 5

    @pytest.mark.asyncio
    async def test_background_dispatch(self, session_factory, dispatcher, mock_queue):
        items = [make_claimed_item() for _ in range(3)]
        mock_queue.claim_batch.return_value = items
        trigger = QueueTrigger(session_factory, dispatcher, max_concurrent=10, background=True)

        result = await trigger.trigger()

        assert result.queued_count == 3
        assert result.estimated_time == 4
        assert result.processing_mode == "async"
        assert result.dispatch_result is None

        await trigger.drain(timeout=1.0)
        await asyncio.sleep(0)
        dispatcher.dispatch.assert_awaited_once_with(items, 10)
        assert trigger.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_response_before_dispatch_finishes(self, session_factory, dispatcher, mock_queue):
        mock_queue.claim_batch.return_value = [make_claimed_item()]
        release = asyncio.Event()

        async def slow_dispatch(items, max_concurrent):
            await release.wait()
            return DispatchResult(processed_count=1, success_count=1)

        dispatcher.dispatch.side_effect = slow_dispatch
        trigger = QueueTrigger(session_factory, dispatcher, background=True)

        result = await trigger.trigger()

        assert result.queued_count == 1
        assert trigger.pending_tasks == 1

        release.set()
        await trigger.drain(timeout=1.0)
        await asyncio.sleep(0)
        assert trigger.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_sync_dispatch(self, session_factory, dispatcher, mock_queue):
        items = [make_claimed_item() for _ in range(2)]
        mock_queue.claim_batch.return_value = items
        dispatcher.dispatch.return_value = DispatchResult(
            processed_count=2, success_count=1, failed_count=1
        )
        trigger = QueueTrigger(session_factory, dispatcher, max_concurrent=1, background=False)

        result = await trigger.trigger()

        assert result.processing_mode == "sync"
        assert result.estimated_time == 8
        assert result.dispatch_result.processed_count == 2
        assert result.dispatch_result.failed_count == 1
        assert trigger.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_max_concurrent_override(self, session_factory, dispatcher, mock_queue):
        items = [make_claimed_item() for _ in range(4)]
        mock_queue.claim_batch.return_value = items
        trigger = QueueTrigger(session_factory, dispatcher, max_concurrent=10, background=False)

        await trigger.trigger(max_concurrent=2)

        dispatcher.dispatch.assert_awaited_once_with(items, 2)

    @pytest.mark.asyncio
    async def test_dispatch_crash_is_contained(self, session_factory, dispatcher, mock_queue):
        mock_queue.claim_batch.return_value = [make_claimed_item()]
        dispatcher.dispatch.side_effect = RuntimeError("unexpected")
        trigger = QueueTrigger(session_factory, dispatcher, background=False)

        result = await trigger.trigger()

        assert result.queued_count == 1
        assert result.dispatch_result == DispatchResult()

    @pytest.mark.asyncio
    async def test_claim_error_propagates(
        self, session_factory, mock_session, dispatcher, mock_queue
    ):
        mock_queue.claim_batch.side_effect = QueueClaimError("store down")
        trigger = QueueTrigger(session_factory, dispatcher)

        with pytest.raises(QueueClaimError):
            await trigger.trigger()

        mock_session.rollback.assert_awaited_once()
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_commit_error_becomes_claim_error(
        self, session_factory, mock_session, dispatcher, mock_queue
    ):
        mock_queue.claim_batch.return_value = [make_claimed_item()]
        mock_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("down"))
        trigger = QueueTrigger(session_factory, dispatcher)

        with pytest.raises(QueueClaimError):
            await trigger.trigger()

        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_drain_without_tasks(self, session_factory, dispatcher):
        trigger = QueueTrigger(session_factory, dispatcher)
        await trigger.drain(timeout=0.1)

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels_running_dispatch(
        self, session_factory, dispatcher, mock_queue
    ):
        mock_queue.claim_batch.return_value = [make_claimed_item()]
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def stuck_dispatch(items, max_concurrent):
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        dispatcher.dispatch.side_effect = stuck_dispatch
        trigger = QueueTrigger(session_factory, dispatcher, background=True)

        await trigger.trigger()
        await started.wait()
        await trigger.drain(timeout=0.01)

        assert cancelled.is_set()
        assert trigger.pending_tasks == 0
