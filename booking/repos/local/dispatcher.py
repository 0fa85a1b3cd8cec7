"""
In-process side-effect dispatcher.

Runs the side-effect saga as a background asyncio task so the booking
response does not wait for it. Work in flight is lost if the process dies;
deployments that need durability dispatch through Temporal instead.
"""

import asyncio
import logging
from typing import Set

from booking.domain import BookingSideEffectsJob, SideEffectsReport
from booking.repositories import SideEffectDispatcher
from booking.side_effects import BookingSideEffectsUseCase

logger = logging.getLogger(__name__)


class InProcessSideEffectDispatcher(SideEffectDispatcher):
    def __init__(self, side_effects: BookingSideEffectsUseCase) -> None:
        self.side_effects = side_effects
        self._tasks: Set["asyncio.Task[SideEffectsReport]"] = set()

    async def dispatch(self, job: BookingSideEffectsJob) -> None:
        task = asyncio.create_task(
            self.side_effects.execute(job),
            name=f"booking-side-effects-{job.booking.booking_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        logger.debug(
            "Side effects dispatched in process",
            extra={"booking_id": job.booking.booking_id},
        )

    def _finished(self, task: "asyncio.Task[SideEffectsReport]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Side-effect task crashed",
                extra={"task": task.get_name(), "error": str(error)},
                exc_info=error,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every dispatched job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
