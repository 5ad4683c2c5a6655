"""Alarm audio API middleware components.

- Request ID tracking for log correlation
- Consistent error response formatting
"""

from alarm_audio.api.middleware.errors import (
    APIError,
    ErrorHandlerMiddleware,
    NotFoundError,
    ServiceUnavailableError,
    ValidationAPIError,
)
from alarm_audio.api.middleware.request_id import RequestIDMiddleware, get_request_id

__all__ = [
    "APIError",
    "ErrorHandlerMiddleware",
    "NotFoundError",
    "RequestIDMiddleware",
    "ServiceUnavailableError",
    "ValidationAPIError",
    "get_request_id",
]
