"""
In-memory implementations of the booking repository protocols.

Used by tests, the CLI when no database is configured, and local runs.
They keep the async interfaces of their PostgreSQL counterparts.
"""

from .booking import (
    MemoryBookingRepository,
    MemoryReservationSession,
    MemoryReservationStore,
)
from .booking_config import MemoryBookingConfigRepository
from .outbox import MemoryNotificationSender, MemoryReminderScheduler

__all__ = [
    "MemoryBookingConfigRepository",
    "MemoryBookingRepository",
    "MemoryNotificationSender",
    "MemoryReminderScheduler",
    "MemoryReservationSession",
    "MemoryReservationStore",
]
