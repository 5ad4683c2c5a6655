"""Tests for the event log writer."""

import uuid

import pytest

from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.db.models.audio import EventLog
from alarm_audio.services.event_log import EventLogService, EventType


class TestEventType:
    def test_values(self):
        assert EventType.QUEUE_PROCESSING_STARTED.value == "queue_processing_started"
        assert EventType.COMBINED_AUDIO_GENERATED.value == "combined_audio_generated"


class TestEventLogService:
    @pytest.mark.asyncio
    async def test_log_event(self, session_factory, mock_session):
        user_id = uuid.uuid4()

        stored = await EventLogService(session_factory).log_event(
            EventType.QUEUE_PROCESSING_STARTED, user_id, {"queued_count": 3}
        )

        assert stored is True
        event = mock_session.add.call_args[0][0]
        assert isinstance(event, EventLog)
        assert event.event_type == "queue_processing_started"
        assert event.user_id == user_id
        assert event.meta == {"queued_count": 3}
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_string_event_type(self, session_factory, mock_session):
        await EventLogService(session_factory).log_event("custom_event")

        assert mock_session.add.call_args[0][0].event_type == "custom_event"

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, session_factory, mock_session):
        mock_session.commit.side_effect = SQLAlchemyError("down")

        stored = await EventLogService(session_factory).log_event(EventType.QUEUE_RECONCILED)

        assert stored is False
