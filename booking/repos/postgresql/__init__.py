"""PostgreSQL implementations of booking repositories."""

from .booking import PostgreSQLBookingRepository
from .booking_config import PostgreSQLBookingConfigRepository
from .outbox import PostgreSQLNotificationOutbox, PostgreSQLReminderOutbox
from .reservation import PostgreSQLReservationStore
from .schema import ensure_schema

__all__ = [
    "PostgreSQLBookingConfigRepository",
    "PostgreSQLBookingRepository",
    "PostgreSQLNotificationOutbox",
    "PostgreSQLReminderOutbox",
    "PostgreSQLReservationStore",
    "ensure_schema",
]
