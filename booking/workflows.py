"""
Temporal workflows for the booking engine.

Workflows hold no business logic of their own: they wire workflow proxies
into a use case and run it deterministically.
"""

import logging
from datetime import timedelta

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from .domain import BookingSideEffectsJob, SideEffectsReport
    from .repos.temporal.proxies import (
        WorkflowBookingRepositoryProxy,
        WorkflowCalendarSourceProxy,
        WorkflowNotificationSenderProxy,
        WorkflowReminderSchedulerProxy,
    )

logger = logging.getLogger(__name__)


@workflow.defn
class BookingSideEffectsWorkflow:
    """
    Runs the post-commit side effects of one confirmed booking.

    Calendar event creation, reminders and notifications each run as an
    activity with its own timeout and retry policy. A failed step is
    reported, never raised, so the workflow completes even when the
    calendar provider is down.
    """

    def __init__(self) -> None:
        self.current_step = "initialized"

    @workflow.query
    def get_current_step(self) -> str:
        return self.current_step

    @workflow.run
    async def run(self, job: BookingSideEffectsJob) -> SideEffectsReport:
        logger.info(
            "Starting BookingSideEffectsWorkflow",
            extra={
                "booking_id": job.booking.booking_id,
                "link_id": job.link.link_id,
            },
        )

        # Import here to allow for patching in tests
        from booking.side_effects import BookingSideEffectsUseCase

        use_case = BookingSideEffectsUseCase(
            calendar_source=WorkflowCalendarSourceProxy(),
            booking_repo=WorkflowBookingRepositoryProxy(),
            reminder_scheduler=WorkflowReminderSchedulerProxy(),
            notification_sender=WorkflowNotificationSenderProxy(),
            reminder_lead=timedelta(minutes=job.reminder_lead_minutes),
            clock=workflow.now,
        )

        self.current_step = "running_side_effects"
        report = await use_case.execute(job)
        self.current_step = "completed"

        logger.info(
            "BookingSideEffectsWorkflow completed",
            extra={
                "booking_id": job.booking.booking_id,
                "calendar_sync": report.calendar_sync.value,
                "failed_steps": report.failed_steps,
            },
        )
        return report
