"""
Calendar source gateway.

Implements the engine-facing CalendarSourceAdapter on top of the user's
calendar connections and the provider adapters registered for them.
"""

import asyncio
import logging
from typing import List, Mapping, Optional

from .domain import (
    BusyInterval,
    CalendarConnection,
    CalendarEventRequest,
    ExternalEventRef,
    TimeWindow,
)
from .exceptions import CalendarSourceUnavailableError
from .repositories import (
    CalendarConnectionRepository,
    CalendarProviderAdapter,
    CalendarSourceAdapter,
)
from .validation import ensure_repository_protocol

logger = logging.getLogger(__name__)


def choose_write_connection(
    connections: List[CalendarConnection],
) -> Optional[CalendarConnection]:
    """The primary active connection, else the first active one."""
    active = [c for c in connections if c.is_active]
    for connection in active:
        if connection.is_primary:
            return connection
    return active[0] if active else None


class CalendarSourceGateway(CalendarSourceAdapter):
    """
    Routes calendar reads and writes to the owner's active connections.

    Busy intervals are merged from every active connection. A provider that
    fails to answer is logged and skipped so one outage does not block all
    bookings; internal bookings are still enforced. Events are written to
    a single connection chosen by ``choose_write_connection``.
    """

    def __init__(
        self,
        connection_repo: CalendarConnectionRepository,
        adapters: Mapping[str, CalendarProviderAdapter],
    ) -> None:
        self.connection_repo = ensure_repository_protocol(
            connection_repo, CalendarConnectionRepository
        )
        self.adapters = {
            provider: ensure_repository_protocol(
                adapter, CalendarProviderAdapter
            )
            for provider, adapter in adapters.items()
        }

    async def list_busy_intervals(
        self, owner_id: str, window: TimeWindow
    ) -> List[BusyInterval]:
        connections = await self.connection_repo.list_calendar_connections(
            owner_id
        )
        connections = [c for c in connections if c.is_active]
        results = await asyncio.gather(
            *(self._busy_for(connection, window) for connection in connections)
        )
        return [interval for result in results for interval in result]

    async def _busy_for(
        self, connection: CalendarConnection, window: TimeWindow
    ) -> List[BusyInterval]:
        adapter = self.adapters.get(connection.provider)
        if adapter is None:
            logger.warning(
                "No adapter for calendar provider, ignoring connection",
                extra={
                    "connection_id": connection.connection_id,
                    "provider": connection.provider,
                },
            )
            return []
        try:
            return await adapter.list_busy_intervals(connection, window)
        except Exception as e:
            logger.error(
                "Failed to read busy intervals",
                extra={
                    "connection_id": connection.connection_id,
                    "owner_id": connection.owner_id,
                    "provider": connection.provider,
                    "operation": "list_busy_intervals",
                    "error": str(e),
                },
                exc_info=True,
            )
            return []

    async def create_event(
        self, owner_id: str, request: CalendarEventRequest
    ) -> Optional[ExternalEventRef]:
        connections = await self.connection_repo.list_calendar_connections(
            owner_id
        )
        connection = choose_write_connection(connections)
        if connection is None:
            return None
        adapter = self.adapters.get(connection.provider)
        if adapter is None:
            raise CalendarSourceUnavailableError(connection.provider)

        logger.debug(
            "Creating calendar event",
            extra={
                "owner_id": owner_id,
                "connection_id": connection.connection_id,
                "provider": connection.provider,
                "idempotency_key": request.idempotency_key,
            },
        )
        return await adapter.create_event(connection, request)
