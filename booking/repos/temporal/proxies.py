"""
Workflow-specific proxies for the side-effect collaborators.
These classes are used *inside* Temporal workflows to call activities.
They keep the workflow deterministic by delegating every I/O call to an
activity.
"""

from booking.repositories import (
    BookingRepository,
    CalendarSourceAdapter,
    NotificationSender,
    ReminderScheduler,
)

from .activity_names import (
    BOOKING_REPO_ACTIVITY_BASE,
    CALENDAR_SOURCE_ACTIVITY_BASE,
    NOTIFICATION_ACTIVITY_BASE,
    REMINDER_ACTIVITY_BASE,
)
from .decorators import temporal_workflow_proxy


@temporal_workflow_proxy(
    CALENDAR_SOURCE_ACTIVITY_BASE,
    default_timeout_seconds=30,
    retry_methods=["create_event", "list_busy_intervals"],
)
class WorkflowCalendarSourceProxy(CalendarSourceAdapter):
    """
    Workflow implementation of CalendarSourceAdapter that calls activities.
    create_event carries the booking's idempotency key, so retrying it
    never duplicates the event.
    """

    pass


@temporal_workflow_proxy(
    BOOKING_REPO_ACTIVITY_BASE,
    default_timeout_seconds=10,
    retry_methods=["record_calendar_sync", "mark_calendar_sync_failed"],
)
class WorkflowBookingRepositoryProxy(BookingRepository):
    """Workflow implementation of BookingRepository that calls activities."""

    pass


@temporal_workflow_proxy(
    REMINDER_ACTIVITY_BASE,
    default_timeout_seconds=10,
    retry_methods=["schedule_reminder"],
)
class WorkflowReminderSchedulerProxy(ReminderScheduler):
    pass


@temporal_workflow_proxy(
    NOTIFICATION_ACTIVITY_BASE,
    default_timeout_seconds=10,
    retry_methods=["notify"],
)
class WorkflowNotificationSenderProxy(NotificationSender):
    pass


__all__ = [
    "WorkflowCalendarSourceProxy",
    "WorkflowBookingRepositoryProxy",
    "WorkflowReminderSchedulerProxy",
    "WorkflowNotificationSenderProxy",
]
