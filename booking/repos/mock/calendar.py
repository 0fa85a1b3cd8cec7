"""
Mock calendar provider for tests, demos, and the worker's ``mock``
provider.
"""

import logging
import uuid
from typing import Dict, List, Optional

from booking.domain import (
    BusyInterval,
    BusySource,
    CalendarConnection,
    CalendarEventRequest,
    ExternalEventRef,
    TimeWindow,
)
from booking.exceptions import CalendarProviderError
from booking.repositories import CalendarProviderAdapter

logger = logging.getLogger(__name__)


class MockCalendarProviderAdapter(CalendarProviderAdapter):
    """
    Keeps busy windows and created events in memory.

    ``create_event`` honours idempotency keys like a real provider: the
    second call with a key returns the first call's event. Set
    ``fail_create_event`` or ``fail_busy_reads`` to simulate outages.
    """

    def __init__(self, provider: str = "mock") -> None:
        self.provider = provider
        self.busy_windows: Dict[str, List[TimeWindow]] = {}
        self.events: Dict[str, ExternalEventRef] = {}
        self.requests: Dict[str, CalendarEventRequest] = {}
        self.create_event_calls = 0
        self.fail_create_event: Optional[str] = None
        self.fail_busy_reads: Optional[str] = None

    def add_busy(self, owner_id: str, window: TimeWindow) -> None:
        self.busy_windows.setdefault(owner_id, []).append(window)

    async def list_busy_intervals(
        self, connection: CalendarConnection, window: TimeWindow
    ) -> List[BusyInterval]:
        if self.fail_busy_reads:
            raise CalendarProviderError(
                self.provider, "list_busy_intervals", self.fail_busy_reads
            )
        return [
            BusyInterval(
                owner_id=connection.owner_id,
                window=busy,
                source=BusySource.EXTERNAL,
                provider=self.provider,
            )
            for busy in self.busy_windows.get(connection.owner_id, [])
            if busy.overlaps(window)
        ]

    async def create_event(
        self, connection: CalendarConnection, request: CalendarEventRequest
    ) -> ExternalEventRef:
        self.create_event_calls += 1
        if self.fail_create_event:
            raise CalendarProviderError(
                self.provider, "create_event", self.fail_create_event
            )

        existing = self.events.get(request.idempotency_key)
        if existing is not None:
            logger.info(
                "Event already created for idempotency key",
                extra={
                    "idempotency_key": request.idempotency_key,
                    "event_id": existing.event_id,
                },
            )
            return existing

        event_ref = ExternalEventRef(
            provider=self.provider,
            calendar_id=connection.calendar_id,
            event_id=f"evt-{uuid.uuid4().hex[:12]}",
        )
        self.events[request.idempotency_key] = event_ref
        self.requests[request.idempotency_key] = request
        return event_ref
