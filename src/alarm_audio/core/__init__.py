"""Alarm audio core module.

Shared components used across the API and the worker:
- Configuration management
- Cached settings access
"""

from alarm_audio.core.config import (
    ClaimOrder,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    OpenAISettings,
    QueueSettings,
    Settings,
    StorageSettings,
)
from alarm_audio.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ClaimOrder",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "OpenAISettings",
    "QueueSettings",
    "Settings",
    "StorageSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
