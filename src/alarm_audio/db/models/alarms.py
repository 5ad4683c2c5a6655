"""Alarm and user context models.

These tables are written by the mobile app and the content ingestion jobs.
The audio generator only reads them.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import Boolean, Date, Float, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from alarm_audio.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
    UUIDRef,
)

# News categories with a matching `<category>_headlines` column on DailyContent
NEWS_CATEGORIES = ("general", "business", "technology", "sports")


class Alarm(Base):
    """A user's scheduled wake-up alarm."""

    __tablename__ = "alarms"

    id: Mapped[UUIDPrimaryKey]
    user_id: Mapped[UUIDRef]
    alarm_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    # Local wall clock time, "HH:MM"
    alarm_time_local: Mapped[str] = mapped_column(String(8), nullable=False)
    alarm_timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    next_trigger_at: Mapped[OptionalTimestampTZ]
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]


class UserPreferences(Base):
    """Per-user content and voice preferences."""

    __tablename__ = "user_preferences"

    id: Mapped[UUIDPrimaryKey]
    user_id: Mapped[UUIDRef] = mapped_column(unique=True)
    news_categories: Mapped[list[str] | None] = mapped_column(ARRAY(String), nullable=True)
    sports_team: Mapped[str | None] = mapped_column(String(100), nullable=True)
    stocks: Mapped[list[str] | None] = mapped_column(ARRAY(String), nullable=True)
    include_weather: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    preferred_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tts_voice: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]


class WeatherData(Base):
    """Latest weather snapshot for a user's location."""

    __tablename__ = "weather_data"

    id: Mapped[UUIDPrimaryKey]
    user_id: Mapped[UUIDRef]
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    current_temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    low_temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sunrise_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sunset_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[OptionalTimestampTZ]


class DailyContent(Base):
    """Headlines and summaries collected once per day."""

    __tablename__ = "daily_content"

    id: Mapped[UUIDPrimaryKey]
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    general_headlines: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_headlines: Mapped[str | None] = mapped_column(Text, nullable=True)
    technology_headlines: Mapped[str | None] = mapped_column(Text, nullable=True)
    sports_headlines: Mapped[str | None] = mapped_column(Text, nullable=True)
    sports_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    stocks_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    holidays: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[TimestampTZ]

    def headlines_for(self, category: str) -> str | None:
        """Return the headlines column for a news category, if it exists."""
        if category not in NEWS_CATEGORIES:
            return None
        return getattr(self, f"{category}_headlines")
