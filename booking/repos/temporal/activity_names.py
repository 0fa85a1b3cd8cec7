"""
Activity name bases shared by activities.py and proxies.py.

Kept in their own module so the workflow proxies can import them without
pulling backend code (asyncpg, Google client) into the workflow sandbox.
"""

CALENDAR_SOURCE_ACTIVITY_BASE = "booking.calendar_source"
BOOKING_REPO_ACTIVITY_BASE = "booking.booking_repo.postgresql"
REMINDER_ACTIVITY_BASE = "booking.reminder_scheduler.postgresql"
NOTIFICATION_ACTIVITY_BASE = "booking.notification_sender.postgresql"

__all__ = [
    "CALENDAR_SOURCE_ACTIVITY_BASE",
    "BOOKING_REPO_ACTIVITY_BASE",
    "REMINDER_ACTIVITY_BASE",
    "NOTIFICATION_ACTIVITY_BASE",
]
