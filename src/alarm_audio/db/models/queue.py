"""Audio generation queue model.

Each row asks for the wake-up audio of one alarm to be generated at or after
`scheduled_for`. Rows are claimed in batches with an atomic conditional
update (see AudioQueueService.claim_batch) so concurrent triggers never
process the same row twice.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from alarm_audio.db.models.base import (
    Base,
    OptionalTimestampTZ,
    QueueStatus,
    TimestampTZ,
    UUIDPrimaryKey,
    UUIDRef,
    enum_values,
)


class QueueItem(Base):
    """A unit of audio generation work."""

    __tablename__ = "audio_generation_queue"

    id: Mapped[UUIDPrimaryKey]
    alarm_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alarms.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUIDRef]

    # Earliest time the item may be claimed
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[QueueStatus] = mapped_column(
        Enum(
            QueueStatus,
            name="queue_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=QueueStatus.PENDING,
    )

    # Lower value is claimed first when ordering by priority
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)

    retry_count: Mapped[int] = mapped_column(default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(default=3, nullable=False)

    # Set only when the item reaches the failed state
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[TimestampTZ]
    processed_at: Mapped[OptionalTimestampTZ]

    # Claim tracking, used to detect orphaned claims and to reject stale reports
    claimed_at: Mapped[OptionalTimestampTZ]
    claimed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_audio_generation_queue_status_scheduled", "status", "scheduled_for"),
        Index("ix_audio_generation_queue_status_priority", "status", "priority"),
        Index("ix_audio_generation_queue_alarm_id", "alarm_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueueItem(id={self.id}, alarm_id={self.alarm_id}, status={self.status.value})>"
        )
