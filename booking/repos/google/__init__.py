"""Google Calendar provider adapter."""

from .calendar import (
    GoogleCalendarProviderAdapter,
    google_event_id,
    token_file_service_factory,
)

__all__ = [
    "GoogleCalendarProviderAdapter",
    "google_event_id",
    "token_file_service_factory",
]
