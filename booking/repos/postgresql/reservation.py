"""
PostgreSQL implementation of ReservationStore.

A reservation is one database transaction holding a transaction-scoped
advisory lock per lock key. Keys are locked in sorted order so concurrent
reservations over overlapping key sets cannot deadlock. ``lock_timeout``
bounds each lock wait and ``statement_timeout`` bounds every statement of
the critical section; either expiring aborts the transaction and surfaces
as ReservationContentionError.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, List, Optional, Sequence

import asyncpg
from asyncpg import Connection, Pool

from booking.domain import Booking, BookingStatus, RotationState, TimeWindow
from booking.exceptions import ReservationContentionError, SlotConflictError
from booking.repositories import ReservationSession, ReservationStore

from .booking import (
    BOOKING_COLUMNS,
    booking_insert_args,
    fetch_booking,
    fetch_confirmed_bookings,
    row_to_booking,
)

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_TIMEOUT = timedelta(seconds=10)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _milliseconds(value: timedelta) -> str:
    return f"{max(int(value.total_seconds() * 1000), 1)}ms"


class PostgreSQLReservationSession(ReservationSession):
    """Statements run on the reservation's connection and transaction."""

    def __init__(
        self, conn: Connection, clock: Callable[[], datetime]
    ) -> None:
        self.conn = conn
        self._clock = clock

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        return await fetch_confirmed_bookings(self.conn, user_id, window)

    async def get_rotation_state(self, booking_link_id: str) -> RotationState:
        row = await self.conn.fetchrow(
            """
            SELECT booking_link_id, last_assigned_index, member_loads,
                   updated_at
            FROM rotation_states
            WHERE booking_link_id = $1
            FOR UPDATE
            """,
            booking_link_id,
        )
        if row is None:
            return RotationState(booking_link_id=booking_link_id)
        return RotationState(
            booking_link_id=row["booking_link_id"],
            last_assigned_index=row["last_assigned_index"],
            member_loads=json.loads(row["member_loads"]),
            updated_at=row["updated_at"],
        )

    async def save_rotation_state(self, state: RotationState) -> None:
        await self.conn.execute(
            """
            INSERT INTO rotation_states (
                booking_link_id, last_assigned_index, member_loads,
                updated_at
            ) VALUES ($1, $2, $3, $4)
            ON CONFLICT (booking_link_id)
            DO UPDATE SET
                last_assigned_index = EXCLUDED.last_assigned_index,
                member_loads = EXCLUDED.member_loads,
                updated_at = EXCLUDED.updated_at
            """,
            state.booking_link_id,
            state.last_assigned_index,
            json.dumps(state.member_loads, sort_keys=True),
            state.updated_at or self._clock(),
        )

    async def insert_booking(self, booking: Booking) -> None:
        try:
            await self.conn.execute(
                f"""
                INSERT INTO bookings ({BOOKING_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                        $13, $14)
                """,
                *booking_insert_args(booking),
            )
        except asyncpg.exceptions.ExclusionViolationError as e:
            raise SlotConflictError(booking.assigned_user_id) from e
        except asyncpg.exceptions.UniqueViolationError as e:
            raise ValueError(
                f"Booking {booking.booking_id} already exists"
            ) from e

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return await fetch_booking(self.conn, booking_id)

    async def update_booking_status(
        self,
        booking: Booking,
        status: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        now = self._clock()
        cancelled = status is BookingStatus.CANCELLED
        row = await self.conn.fetchrow(
            f"""
            UPDATE bookings
            SET status = $2,
                updated_at = $3,
                cancelled_at = CASE WHEN $4 THEN $3 ELSE cancelled_at END,
                cancellation_reason = CASE
                    WHEN $4 THEN $5 ELSE cancellation_reason END
            WHERE booking_id = $1
            RETURNING {BOOKING_COLUMNS}
            """,
            booking.booking_id,
            status.value,
            now,
            cancelled,
            reason,
        )
        if row is None:
            raise ValueError(f"Booking {booking.booking_id} not found")
        return row_to_booking(row)


class PostgreSQLReservationStore(ReservationStore):
    """
    ReservationStore backed by PostgreSQL advisory locks.

    Correct across any number of processes sharing the database.
    """

    def __init__(
        self,
        pool: Pool,
        transaction_timeout: timedelta = DEFAULT_TRANSACTION_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize with an asyncpg connection pool.

        Args:
            pool: asyncpg connection pool for database operations
            transaction_timeout: Upper bound for each statement and for
                idling inside the critical section
            clock: Source of timestamps written by sessions
        """
        self.pool = pool
        self.transaction_timeout = transaction_timeout
        self._clock = clock or _utc_now
        logger.debug("Initialized PostgreSQLReservationStore")

    @asynccontextmanager
    async def reserve(
        self, lock_keys: Sequence[str], timeout: timedelta
    ) -> AsyncIterator[PostgreSQLReservationSession]:
        keys = sorted(set(lock_keys))
        try:
            async with self.pool.acquire(
                timeout=timeout.total_seconds()
            ) as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        SELECT set_config('lock_timeout', $1, true),
                               set_config('statement_timeout', $2, true),
                               set_config(
                                   'idle_in_transaction_session_timeout',
                                   $2, true
                               )
                        """,
                        _milliseconds(timeout),
                        _milliseconds(self.transaction_timeout),
                    )
                    for key in keys:
                        await conn.execute(
                            "SELECT pg_advisory_xact_lock("
                            "hashtextextended($1, 0))",
                            key,
                        )
                    logger.debug(
                        "Reservation locks acquired",
                        extra={"lock_keys": keys},
                    )
                    yield PostgreSQLReservationSession(conn, self._clock)
        except (
            asyncpg.exceptions.LockNotAvailableError,
            asyncpg.exceptions.QueryCanceledError,
            asyncio.TimeoutError,
        ) as e:
            raise ReservationContentionError(
                keys, f"Reservation timed out: {type(e).__name__}: {e}"
            ) from e
