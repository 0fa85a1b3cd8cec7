"""
Durable side-effect dispatch through Temporal.

Each confirmed booking starts one BookingSideEffectsWorkflow whose id is
derived from the booking id, so dispatching the same booking twice starts
nothing new.
"""

import logging
from datetime import timedelta

from temporalio.client import Client
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from booking.domain import BookingSideEffectsJob
from booking.repositories import SideEffectDispatcher
from booking.workflows import BookingSideEffectsWorkflow

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_LEAD = timedelta(minutes=15)


def side_effects_workflow_id(booking_id: str) -> str:
    return f"booking-side-effects-{booking_id}"


class TemporalSideEffectDispatcher(SideEffectDispatcher):
    def __init__(
        self,
        client: Client,
        task_queue: str,
        reminder_lead: timedelta = DEFAULT_REMINDER_LEAD,
    ) -> None:
        self.client = client
        self.task_queue = task_queue
        self.reminder_lead = reminder_lead

    async def dispatch(self, job: BookingSideEffectsJob) -> None:
        job = job.model_copy(
            update={
                "reminder_lead_minutes": int(
                    self.reminder_lead.total_seconds() // 60
                )
            }
        )
        workflow_id = side_effects_workflow_id(job.booking.booking_id)
        try:
            handle = await self.client.start_workflow(
                BookingSideEffectsWorkflow.run,
                job,
                id=workflow_id,
                task_queue=self.task_queue,
                id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE,
            )
        except WorkflowAlreadyStartedError:
            logger.info(
                "Side effects already dispatched for booking",
                extra={
                    "booking_id": job.booking.booking_id,
                    "workflow_id": workflow_id,
                },
            )
            return

        logger.info(
            "Side-effect workflow started",
            extra={
                "booking_id": job.booking.booking_id,
                "workflow_id": handle.id,
                "run_id": handle.result_run_id,
                "task_queue": self.task_queue,
            },
        )
