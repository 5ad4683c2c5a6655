"""SQLAlchemy ORM models for the alarm audio services.

- base: Common metadata, type definitions and enums
- queue: Audio generation queue
- alarms: Alarms and the user context read during generation
- audio: Generated audio metadata and the event log
"""

from alarm_audio.db.models.alarms import (
    NEWS_CATEGORIES,
    Alarm,
    DailyContent,
    UserPreferences,
    WeatherData,
)
from alarm_audio.db.models.audio import Audio, EventLog
from alarm_audio.db.models.base import (
    AudioStatus,
    AudioType,
    Base,
    QueueStatus,
    metadata,
)
from alarm_audio.db.models.queue import QueueItem

__all__ = [
    "NEWS_CATEGORIES",
    "Alarm",
    "Audio",
    "AudioStatus",
    "AudioType",
    "Base",
    "DailyContent",
    "EventLog",
    "QueueItem",
    "QueueStatus",
    "UserPreferences",
    "WeatherData",
    "metadata",
]
