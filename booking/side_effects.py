"""
Post-commit side effects of a confirmed booking.

Runs the calendar event, reminder and notification steps one after another.
Every step is idempotent (calendar idempotency key, reminder and
notification dedupe keys) so the whole sequence can be retried, and every
step is best-effort: a failure is logged, recorded in the report, and never
undoes the booking.

This module is imported inside Temporal workflows, so it must stay free of
I/O and wall-clock reads; time comes from the injected clock.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .domain import (
    Booking,
    BookingLink,
    BookingSideEffectsJob,
    CalendarEventRequest,
    CalendarSyncOutcome,
    ExternalEventRef,
    NotificationRequest,
    NotificationTemplate,
    ReminderRequest,
    SideEffectsReport,
)
from .repositories import (
    BookingRepository,
    CalendarSourceAdapter,
    NotificationSender,
    ReminderScheduler,
)
from .validation import ensure_repository_protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_REMINDER_LEAD = timedelta(minutes=15)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def booking_message_data(booking: Booking, link: BookingLink) -> Dict[str, Any]:
    """JSON-safe fields shared by reminders and notifications."""
    return {
        "booking_id": booking.booking_id,
        "booking_link_id": booking.booking_link_id,
        "title": link.title,
        "start": booking.window.start.isoformat(),
        "end": booking.window.end.isoformat(),
        "assigned_user_id": booking.assigned_user_id,
        "requester_name": booking.requester.name,
        "requester_email": booking.requester.email,
    }


class BookingSideEffectsUseCase:
    """
    Saga of best-effort steps run after a booking commits.

    In a Temporal workflow the collaborators are workflow proxies and each
    step gets the activity's own timeout and retry policy; in-process the
    optional ``step_timeout`` bounds every step.
    """

    def __init__(
        self,
        calendar_source: CalendarSourceAdapter,
        booking_repo: BookingRepository,
        reminder_scheduler: ReminderScheduler,
        notification_sender: NotificationSender,
        reminder_lead: timedelta = DEFAULT_REMINDER_LEAD,
        step_timeout: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.calendar_source = ensure_repository_protocol(
            calendar_source, CalendarSourceAdapter
        )
        self.booking_repo = ensure_repository_protocol(
            booking_repo, BookingRepository
        )
        self.reminder_scheduler = ensure_repository_protocol(
            reminder_scheduler, ReminderScheduler
        )
        self.notification_sender = ensure_repository_protocol(
            notification_sender, NotificationSender
        )
        self.reminder_lead = reminder_lead
        self.step_timeout = step_timeout
        self.clock = clock or _utc_now

    async def _step(self, awaitable: Awaitable[Any]) -> Any:
        if self.step_timeout is None:
            return await awaitable
        return await asyncio.wait_for(
            awaitable, timeout=self.step_timeout.total_seconds()
        )

    async def execute(self, job: BookingSideEffectsJob) -> SideEffectsReport:
        """Run every side effect for ``job`` and report what happened."""
        booking, link = job.booking, job.link
        failed_steps: List[str] = []

        logger.info(
            "Running booking side effects",
            extra={
                "booking_id": booking.booking_id,
                "link_id": link.link_id,
                "assigned_user_id": booking.assigned_user_id,
            },
        )

        calendar_sync, event_ref = await self.sync_calendar(booking, link)
        if calendar_sync is CalendarSyncOutcome.FAILED:
            failed_steps.append("create_event")

        reminders_scheduled = 0
        for reminder in self.build_reminders(booking, link):
            if await self._attempt(
                "schedule_reminder",
                booking,
                self.reminder_scheduler.schedule_reminder(reminder),
            ):
                reminders_scheduled += 1
            else:
                failed_steps.append(f"schedule_reminder:{reminder.recipient}")

        notifications_sent = 0
        for notification in self.build_confirmations(booking, link):
            if await self._attempt(
                "notify",
                booking,
                self.notification_sender.notify(notification),
            ):
                notifications_sent += 1
            else:
                failed_steps.append(f"notify:{notification.recipient}")

        report = SideEffectsReport(
            booking_id=booking.booking_id,
            calendar_sync=calendar_sync,
            external_event_ref=event_ref,
            reminders_scheduled=reminders_scheduled,
            notifications_sent=notifications_sent,
            failed_steps=failed_steps,
        )
        logger.info(
            "Booking side effects finished",
            extra={
                "booking_id": booking.booking_id,
                "calendar_sync": calendar_sync.value,
                "reminders_scheduled": reminders_scheduled,
                "notifications_sent": notifications_sent,
                "failed_steps": failed_steps,
            },
        )
        return report

    async def sync_calendar(
        self, booking: Booking, link: BookingLink
    ) -> Tuple[CalendarSyncOutcome, Optional[ExternalEventRef]]:
        """
        Create the assignee's calendar event and record the reference.

        On failure the booking is flagged CalendarSyncFailed and stays
        confirmed. Calling this again for the same booking reuses the
        idempotency key, so it never creates a second event.
        """
        request = CalendarEventRequest(
            window=booking.window,
            title=link.title or f"Meeting with {booking.requester.name}",
            description=booking.requester.notes,
            attendees=[booking.requester.email],
            idempotency_key=booking.idempotency_key,
        )
        try:
            event_ref = await self._step(
                self.calendar_source.create_event(
                    booking.assigned_user_id, request
                )
            )
            if event_ref is None:
                logger.info(
                    "No calendar to write to, skipping calendar sync",
                    extra={
                        "booking_id": booking.booking_id,
                        "owner_id": booking.assigned_user_id,
                    },
                )
                return CalendarSyncOutcome.SKIPPED, None
            await self._step(
                self.booking_repo.record_calendar_sync(
                    booking.booking_id, event_ref
                )
            )
        except Exception as e:
            logger.error(
                "Calendar sync failed",
                extra={
                    "booking_id": booking.booking_id,
                    "owner_id": booking.assigned_user_id,
                    "operation": "create_event",
                    "idempotency_key": request.idempotency_key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            await self._flag_sync_failure(booking, f"{type(e).__name__}: {e}")
            return CalendarSyncOutcome.FAILED, None

        logger.info(
            "Calendar event created",
            extra={
                "booking_id": booking.booking_id,
                "provider": event_ref.provider,
                "event_id": event_ref.event_id,
            },
        )
        return CalendarSyncOutcome.SYNCED, event_ref

    async def _flag_sync_failure(self, booking: Booking, error: str) -> None:
        try:
            await self._step(
                self.booking_repo.mark_calendar_sync_failed(
                    booking.booking_id, error
                )
            )
        except Exception as e:
            logger.error(
                "Could not flag booking as CalendarSyncFailed",
                extra={
                    "booking_id": booking.booking_id,
                    "operation": "mark_calendar_sync_failed",
                    "error": str(e),
                },
                exc_info=True,
            )

    async def _attempt(
        self, operation: str, booking: Booking, awaitable: Awaitable[None]
    ) -> bool:
        try:
            await self._step(awaitable)
            return True
        except Exception as e:
            logger.error(
                "Booking side effect failed",
                extra={
                    "booking_id": booking.booking_id,
                    "operation": operation,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return False

    def build_reminders(
        self, booking: Booking, link: BookingLink
    ) -> List[ReminderRequest]:
        """Reminders for requester and assignee; past send times are
        dropped."""
        send_at = booking.window.start - self.reminder_lead
        if send_at <= self.clock():
            logger.info(
                "Reminder time already passed, not scheduling reminders",
                extra={
                    "booking_id": booking.booking_id,
                    "send_at": send_at.isoformat(),
                },
            )
            return []

        data = booking_message_data(booking, link)
        recipients = [
            ("requester", booking.requester.email),
            ("assignee", booking.assigned_user_id),
        ]
        return [
            ReminderRequest(
                recipient=recipient,
                send_at=send_at,
                payload={
                    **data,
                    "role": role,
                    "template": NotificationTemplate.BOOKING_REMINDER.value,
                },
                dedupe_key=f"{booking.booking_id}:reminder:{role}",
            )
            for role, recipient in recipients
        ]

    def build_confirmations(
        self, booking: Booking, link: BookingLink
    ) -> List[NotificationRequest]:
        data = booking_message_data(booking, link)
        notifications = [
            NotificationRequest(
                recipient=booking.requester.email,
                template=NotificationTemplate.BOOKING_CONFIRMED_REQUESTER,
                data=data,
                dedupe_key=f"{booking.booking_id}:confirmed:requester",
            )
        ]
        if link.notify_on_booking:
            notifications.append(
                NotificationRequest(
                    recipient=booking.assigned_user_id,
                    template=NotificationTemplate.BOOKING_CONFIRMED_ASSIGNEE,
                    data=data,
                    dedupe_key=f"{booking.booking_id}:confirmed:assignee",
                )
            )
        return notifications

    async def notify_cancellation(
        self, booking: Booking, link: BookingLink
    ) -> int:
        """Tell both parties a booking was cancelled; returns how many
        notifications went out."""
        data = {
            **booking_message_data(booking, link),
            "cancellation_reason": booking.cancellation_reason,
        }
        sent = 0
        for role, recipient in (
            ("requester", booking.requester.email),
            ("assignee", booking.assigned_user_id),
        ):
            notification = NotificationRequest(
                recipient=recipient,
                template=NotificationTemplate.BOOKING_CANCELLED,
                data=data,
                dedupe_key=f"{booking.booking_id}:cancelled:{role}",
            )
            if await self._attempt(
                "notify",
                booking,
                self.notification_sender.notify(notification),
            ):
                sent += 1
        return sent
