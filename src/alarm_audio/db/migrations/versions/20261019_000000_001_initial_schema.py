"""Initial schema for alarm audio generation.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- alarms, user_preferences, weather_data, daily_content (generation context)
- audio (generated clip metadata)
- logs (event log)
- audio_generation_queue (work queue)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

QUEUE_STATUSES = ("pending", "processing", "completed", "failed")
AUDIO_TYPES = ("weather", "content", "combined")
AUDIO_STATUSES = ("generating", "ready", "failed", "expired")


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply migration: initial alarm audio schema."""
    op.create_table(
        "alarms",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("alarm_date", sa.Date(), nullable=True),
        sa.Column("alarm_time_local", sa.String(8), nullable=False),
        sa.Column("alarm_timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("next_trigger_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_alarms")),
    )
    op.create_index(op.f("ix_alarms_user_id"), "alarms", ["user_id"])

    op.create_table(
        "user_preferences",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("news_categories", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("sports_team", sa.String(100), nullable=True),
        sa.Column("stocks", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("include_weather", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("preferred_name", sa.String(100), nullable=True),
        sa.Column("tts_voice", sa.String(32), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_user_preferences")),
        sa.UniqueConstraint("user_id", name=op.f("uq_user_preferences_user_id")),
    )

    op.create_table(
        "weather_data",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("current_temp", sa.Float(), nullable=True),
        sa.Column("high_temp", sa.Float(), nullable=True),
        sa.Column("low_temp", sa.Float(), nullable=True),
        sa.Column("condition", sa.String(100), nullable=True),
        sa.Column("sunrise_time", sa.String(16), nullable=True),
        sa.Column("sunset_time", sa.String(16), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_weather_data")),
    )
    op.create_index(op.f("ix_weather_data_user_id"), "weather_data", ["user_id"])

    op.create_table(
        "daily_content",
        _uuid_pk(),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("general_headlines", sa.Text(), nullable=True),
        sa.Column("business_headlines", sa.Text(), nullable=True),
        sa.Column("technology_headlines", sa.Text(), nullable=True),
        sa.Column("sports_headlines", sa.Text(), nullable=True),
        sa.Column("sports_summary", sa.Text(), nullable=True),
        sa.Column("stocks_summary", sa.Text(), nullable=True),
        sa.Column("holidays", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_daily_content")),
    )
    op.create_index(op.f("ix_daily_content_date"), "daily_content", ["date"])

    op.create_table(
        "audio",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("alarm_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "audio_type",
            sa.Enum(*AUDIO_TYPES, name="audio_type", native_enum=False, create_constraint=True),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                *AUDIO_STATUSES, name="audio_status", native_enum=False, create_constraint=True
            ),
            nullable=False,
        ),
        sa.Column("audio_url", sa.String(1000), nullable=False),
        sa.Column("script_text", sa.Text(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("cache_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cached_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["alarm_id"],
            ["alarms.id"],
            name=op.f("fk_audio_alarm_id_alarms"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audio")),
    )
    op.create_index("ix_audio_alarm_id_type", "audio", ["alarm_id", "audio_type"])

    op.create_table(
        "logs",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_logs")),
    )
    op.create_index("ix_logs_event_type_created", "logs", ["event_type", "created_at"])

    op.create_table(
        "audio_generation_queue",
        _uuid_pk(),
        sa.Column("alarm_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                *QUEUE_STATUSES, name="queue_status", native_enum=False, create_constraint=True
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(
            ["alarm_id"],
            ["alarms.id"],
            name=op.f("fk_audio_generation_queue_alarm_id_alarms"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audio_generation_queue")),
    )
    op.create_index(
        "ix_audio_generation_queue_status_scheduled",
        "audio_generation_queue",
        ["status", "scheduled_for"],
    )
    op.create_index(
        "ix_audio_generation_queue_status_priority",
        "audio_generation_queue",
        ["status", "priority"],
    )
    op.create_index(
        "ix_audio_generation_queue_alarm_id",
        "audio_generation_queue",
        ["alarm_id"],
    )


def downgrade() -> None:
    """Revert migration: drop all alarm audio tables."""
    op.drop_table("audio_generation_queue")
    op.drop_table("logs")
    op.drop_table("audio")
    op.drop_table("daily_content")
    op.drop_table("weather_data")
    op.drop_table("user_preferences")
    op.drop_table("alarms")
