"""Generated audio metadata and the application event log."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import Any

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from alarm_audio.db.models.base import (
    AudioStatus,
    AudioType,
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
    UUIDRef,
    enum_values,
)


class Audio(Base):
    """A generated audio clip stored in object storage."""

    __tablename__ = "audio"

    id: Mapped[UUIDPrimaryKey]
    user_id: Mapped[UUIDRef]
    alarm_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alarms.id", ondelete="CASCADE"),
        nullable=True,
    )
    audio_type: Mapped[AudioType] = mapped_column(
        Enum(
            AudioType,
            name="audio_type",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    status: Mapped[AudioStatus] = mapped_column(
        Enum(
            AudioStatus,
            name="audio_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=AudioStatus.READY,
    )
    audio_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    script_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    cache_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    generated_at: Mapped[TimestampTZ]
    expires_at: Mapped[OptionalTimestampTZ]
    cached_at: Mapped[OptionalTimestampTZ]

    __table_args__ = (Index("ix_audio_alarm_id_type", "alarm_id", "audio_type"),)


class EventLog(Base):
    """Append-only application event, used for usage analytics."""

    __tablename__ = "logs"

    id: Mapped[UUIDPrimaryKey]
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[TimestampTZ]

    __table_args__ = (Index("ix_logs_event_type_created", "event_type", "created_at"),)
