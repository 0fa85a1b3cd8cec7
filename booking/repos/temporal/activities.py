"""
Temporal activity wrapper classes for the booking engine.

Each class wraps a backend implementation so its protocol methods run as
Temporal activities. The worker instantiates these and registers
``activities_for(...)`` of each.
"""

from typing import Any, Callable, List

from booking.calendar_gateway import CalendarSourceGateway
from booking.repos.postgresql.booking import PostgreSQLBookingRepository
from booking.repos.postgresql.outbox import (
    PostgreSQLNotificationOutbox,
    PostgreSQLReminderOutbox,
)

from .activity_names import (
    BOOKING_REPO_ACTIVITY_BASE,
    CALENDAR_SOURCE_ACTIVITY_BASE,
    NOTIFICATION_ACTIVITY_BASE,
    REMINDER_ACTIVITY_BASE,
)
from .decorators import (
    discover_protocol_methods,
    temporal_activity_registration,
)


@temporal_activity_registration(CALENDAR_SOURCE_ACTIVITY_BASE)
class TemporalCalendarSourceGateway(CalendarSourceGateway):
    """Temporal activity wrapper for CalendarSourceGateway."""

    pass


@temporal_activity_registration(BOOKING_REPO_ACTIVITY_BASE)
class TemporalPostgreSQLBookingRepository(PostgreSQLBookingRepository):
    """Temporal activity wrapper for PostgreSQLBookingRepository."""

    pass


@temporal_activity_registration(REMINDER_ACTIVITY_BASE)
class TemporalPostgreSQLReminderOutbox(PostgreSQLReminderOutbox):
    """Temporal activity wrapper for PostgreSQLReminderOutbox."""

    pass


@temporal_activity_registration(NOTIFICATION_ACTIVITY_BASE)
class TemporalPostgreSQLNotificationOutbox(PostgreSQLNotificationOutbox):
    """Temporal activity wrapper for PostgreSQLNotificationOutbox."""

    pass


def activities_for(instance: Any) -> List[Callable[..., Any]]:
    """Bound activity methods of an activity wrapper instance."""
    return [
        getattr(instance, name)
        for name in discover_protocol_methods(type(instance))
    ]


__all__ = [
    "TemporalCalendarSourceGateway",
    "TemporalPostgreSQLBookingRepository",
    "TemporalPostgreSQLReminderOutbox",
    "TemporalPostgreSQLNotificationOutbox",
    "activities_for",
]
