"""Tests for the terminal status reporter."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.db.models.base import QueueStatus
from alarm_audio.services.audio_queue import QueueError
from alarm_audio.services.dispatcher import WorkResult
from alarm_audio.services.status_reporter import StatusReporter
from tests.factories import make_claimed_item


@pytest.fixture
def mock_queue():
    """Patch the queue service used by the reporter."""
    with patch("alarm_audio.services.status_reporter.AudioQueueService") as service_cls:
        queue = MagicMock()
        queue.set_terminal = AsyncMock(return_value=True)
        queue.refresh_claims = AsyncMock(side_effect=lambda ids, token: list(ids))
        service_cls.return_value = queue
        yield queue


class TestStatusReporter:
    @pytest.mark.asyncio
    async def test_success_writes_completed(self, session_factory, mock_session, mock_queue):
        item = make_claimed_item("claim-1")

        written = await StatusReporter(session_factory).report(item, WorkResult.ok())

        assert written is True
        mock_queue.set_terminal.assert_awaited_once_with(
            item.item_id,
            QueueStatus.COMPLETED,
            error_message=None,
            claim_token="claim-1",
        )
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_writes_failed_with_error(self, session_factory, mock_queue):
        item = make_claimed_item("claim-1")

        await StatusReporter(session_factory).report(item, WorkResult.failed("tts down"))

        mock_queue.set_terminal.assert_awaited_once_with(
            item.item_id,
            QueueStatus.FAILED,
            error_message="tts down",
            claim_token="claim-1",
        )

    @pytest.mark.asyncio
    async def test_store_error_is_swallowed(self, session_factory, mock_queue):
        mock_queue.set_terminal.side_effect = QueueError("down")

        written = await StatusReporter(session_factory).report(make_claimed_item(), WorkResult.ok())

        assert written is False

    @pytest.mark.asyncio
    async def test_commit_error_is_swallowed(self, session_factory, mock_session, mock_queue):
        mock_session.commit.side_effect = SQLAlchemyError("lost connection")

        written = await StatusReporter(session_factory).report(make_claimed_item(), WorkResult.ok())

        assert written is False

    @pytest.mark.asyncio
    async def test_item_no_longer_claimed(self, session_factory, mock_queue, caplog):
        mock_queue.set_terminal.return_value = False
        item = make_claimed_item("claim-old")

        written = await StatusReporter(session_factory).report(item, WorkResult.ok())

        assert written is False
        assert "no longer held" in caplog.text

    @pytest.mark.asyncio
    async def test_session_per_report(self, session_factory, mock_queue):
        reporter = StatusReporter(session_factory)

        await reporter.report(make_claimed_item(), WorkResult.ok())
        await reporter.report(make_claimed_item(), WorkResult.ok())

        assert session_factory.call_count == 2

    @pytest.mark.asyncio
    async def test_uses_real_queue_statement(self, session_factory, mock_session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = uuid.uuid4()
        mock_session.execute.return_value = result

        written = await StatusReporter(session_factory).report(
            make_claimed_item(), WorkResult.failed("x")
        )

        assert written is True
        mock_session.execute.assert_awaited_once()


class TestRefresh:
    @pytest.mark.asyncio
    async def test_returns_held_items(self, session_factory, mock_session, mock_queue):
        items = [make_claimed_item("claim-1") for _ in range(3)]
        mock_queue.refresh_claims.side_effect = None
        mock_queue.refresh_claims.return_value = [items[0].item_id, items[2].item_id]

        held = await StatusReporter(session_factory).refresh(items)

        assert held == [items[0], items[2]]
        mock_queue.refresh_claims.assert_awaited_once_with(
            [item.item_id for item in items], "claim-1"
        )
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_groups_by_claim_token(self, session_factory, mock_queue):
        first, second = make_claimed_item("claim-a"), make_claimed_item("claim-b")

        held = await StatusReporter(session_factory).refresh([first, second])

        assert held == [first, second]
        tokens = [c.args[1] for c in mock_queue.refresh_claims.await_args_list]
        assert tokens == ["claim-a", "claim-b"]

    @pytest.mark.asyncio
    async def test_store_error_keeps_items(self, session_factory, mock_queue, caplog):
        mock_queue.refresh_claims.side_effect = QueueError("down")
        items = [make_claimed_item(), make_claimed_item()]

        held = await StatusReporter(session_factory).refresh(items)

        assert held == items
        assert "Failed to refresh queue claims" in caplog.text
