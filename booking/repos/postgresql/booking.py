"""
PostgreSQL implementation of BookingRepository.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from asyncpg import Pool, Record

from booking.domain import (
    Booking,
    BookingStatus,
    ExternalEventRef,
    RequesterInfo,
    TimeWindow,
)
from booking.exceptions import BookingNotFoundError
from booking.repositories import BookingRepository

logger = logging.getLogger(__name__)

BOOKING_COLUMNS = """
    booking_id, booking_link_id, assigned_user_id, window_start,
    window_end, status, requester, external_event_ref,
    calendar_sync_failed, calendar_sync_error, created_at, updated_at,
    cancelled_at, cancellation_reason
"""

SELECT_CONFIRMED_OVERLAPPING = f"""
    SELECT {BOOKING_COLUMNS}
    FROM bookings
    WHERE assigned_user_id = $1
      AND status = 'confirmed'
      AND window_start < $3
      AND window_end > $2
    ORDER BY window_start
"""

SELECT_BOOKING = f"""
    SELECT {BOOKING_COLUMNS}
    FROM bookings
    WHERE booking_id = $1
"""


def row_to_booking(row: Record) -> Booking:
    """Build a Booking from a ``bookings`` row."""
    event_ref = row["external_event_ref"]
    return Booking(
        booking_id=row["booking_id"],
        booking_link_id=row["booking_link_id"],
        assigned_user_id=row["assigned_user_id"],
        window=TimeWindow(start=row["window_start"], end=row["window_end"]),
        status=BookingStatus(row["status"]),
        requester=RequesterInfo.model_validate_json(row["requester"]),
        external_event_ref=(
            ExternalEventRef.model_validate_json(event_ref)
            if event_ref
            else None
        ),
        calendar_sync_failed=row["calendar_sync_failed"],
        calendar_sync_error=row["calendar_sync_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        cancelled_at=row["cancelled_at"],
        cancellation_reason=row["cancellation_reason"],
    )


async def fetch_confirmed_bookings(
    conn: Any, user_id: str, window: TimeWindow
) -> List[Booking]:
    rows = await conn.fetch(
        SELECT_CONFIRMED_OVERLAPPING, user_id, window.start, window.end
    )
    return [row_to_booking(row) for row in rows]


async def fetch_booking(conn: Any, booking_id: str) -> Optional[Booking]:
    row = await conn.fetchrow(SELECT_BOOKING, booking_id)
    return row_to_booking(row) if row else None


def _updated_count(status: str) -> int:
    """Row count from an asyncpg command tag such as 'UPDATE 1'."""
    return int(status.split()[-1])


class PostgreSQLBookingRepository(BookingRepository):
    """
    PostgreSQL implementation of BookingRepository.

    Bookings are inserted and transitioned by
    PostgreSQLReservationSession; this repository covers reads and the
    post-commit calendar sync bookkeeping.
    """

    def __init__(self, pool: Pool):
        """
        Initialize with an asyncpg connection pool.

        Args:
            pool: asyncpg connection pool for database operations
        """
        self.pool = pool
        logger.debug("Initialized PostgreSQLBookingRepository")

    async def generate_booking_id(self) -> str:
        """Generate a unique booking ID using uuid4"""
        return str(uuid.uuid4())

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        async with self.pool.acquire() as conn:
            return await fetch_booking(conn, booking_id)

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        async with self.pool.acquire() as conn:
            return await fetch_confirmed_bookings(conn, user_id, window)

    async def record_calendar_sync(
        self, booking_id: str, event_ref: ExternalEventRef
    ) -> None:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE bookings
                SET external_event_ref = $2,
                    calendar_sync_failed = FALSE,
                    calendar_sync_error = NULL,
                    updated_at = $3
                WHERE booking_id = $1
                """,
                booking_id,
                event_ref.model_dump_json(),
                datetime.now(timezone.utc),
            )
        if _updated_count(status) == 0:
            raise BookingNotFoundError(booking_id)
        logger.info(
            "Recorded calendar event for booking",
            extra={
                "booking_id": booking_id,
                "provider": event_ref.provider,
                "event_id": event_ref.event_id,
            },
        )

    async def mark_calendar_sync_failed(
        self, booking_id: str, error: str
    ) -> None:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE bookings
                SET calendar_sync_failed = TRUE,
                    calendar_sync_error = $2,
                    updated_at = $3
                WHERE booking_id = $1
                """,
                booking_id,
                error,
                datetime.now(timezone.utc),
            )
        if _updated_count(status) == 0:
            raise BookingNotFoundError(booking_id)
        logger.warning(
            "Booking flagged CalendarSyncFailed",
            extra={"booking_id": booking_id, "error": error},
        )

    async def list_calendar_sync_failures(
        self, limit: int
    ) -> List[Booking]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {BOOKING_COLUMNS}
                FROM bookings
                WHERE calendar_sync_failed AND status = 'confirmed'
                ORDER BY created_at
                LIMIT $1
                """,
                limit,
            )
        return [row_to_booking(row) for row in rows]


def booking_insert_args(booking: Booking) -> List[Any]:
    return [
        booking.booking_id,
        booking.booking_link_id,
        booking.assigned_user_id,
        booking.window.start,
        booking.window.end,
        booking.status.value,
        booking.requester.model_dump_json(),
        (
            booking.external_event_ref.model_dump_json()
            if booking.external_event_ref
            else None
        ),
        booking.calendar_sync_failed,
        booking.calendar_sync_error,
        booking.created_at,
        booking.updated_at,
        booking.cancelled_at,
        booking.cancellation_reason,
    ]
