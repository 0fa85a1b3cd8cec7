"""
In-memory booking storage.

``MemoryBookingRepository`` holds bookings and rotation states in
dictionaries. ``MemoryReservationStore`` serializes critical sections with
one ``asyncio.Lock`` per lock key and buffers writes until the section
exits cleanly, mirroring the transactional behaviour of the PostgreSQL
store. Locks are per process, so this store is only correct for a single
process: tests, the CLI demo, and local runs.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence

from booking.domain import (
    Booking,
    BookingStatus,
    ExternalEventRef,
    RotationState,
    TimeWindow,
)
from booking.exceptions import (
    BookingNotFoundError,
    ReservationContentionError,
    SlotConflictError,
)
from booking.repositories import (
    BookingRepository,
    ReservationSession,
    ReservationStore,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _confirmed_overlapping(
    bookings: Dict[str, Booking], user_id: str, window: TimeWindow
) -> List[Booking]:
    return sorted(
        (
            booking
            for booking in bookings.values()
            if booking.status is BookingStatus.CONFIRMED
            and booking.assigned_user_id == user_id
            and booking.window.overlaps(window)
        ),
        key=lambda booking: booking.window.start,
    )


class MemoryBookingRepository(BookingRepository):
    """BookingRepository backed by dictionaries."""

    def __init__(self) -> None:
        self.bookings: Dict[str, Booking] = {}
        self.rotation_states: Dict[str, RotationState] = {}
        logger.debug("Initializing MemoryBookingRepository")

    async def generate_booking_id(self) -> str:
        return f"bkg-{uuid.uuid4()}"

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        return _confirmed_overlapping(self.bookings, user_id, window)

    def _require(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    async def record_calendar_sync(
        self, booking_id: str, event_ref: ExternalEventRef
    ) -> None:
        booking = self._require(booking_id)
        self.bookings[booking_id] = booking.model_copy(
            update={
                "external_event_ref": event_ref,
                "calendar_sync_failed": False,
                "calendar_sync_error": None,
                "updated_at": _utc_now(),
            }
        )

    async def mark_calendar_sync_failed(
        self, booking_id: str, error: str
    ) -> None:
        booking = self._require(booking_id)
        self.bookings[booking_id] = booking.model_copy(
            update={
                "calendar_sync_failed": True,
                "calendar_sync_error": error,
                "updated_at": _utc_now(),
            }
        )

    async def list_calendar_sync_failures(
        self, limit: int
    ) -> List[Booking]:
        failures = [
            booking
            for booking in self.bookings.values()
            if booking.calendar_sync_failed
            and booking.status is BookingStatus.CONFIRMED
        ]
        failures.sort(key=lambda booking: booking.created_at)
        return failures[:limit]


class MemoryReservationSession(ReservationSession):
    """Reads through to the repository; writes are buffered until commit."""

    def __init__(
        self,
        repository: MemoryBookingRepository,
        clock: Callable[[], datetime],
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._bookings: Dict[str, Booking] = {}
        self._rotation_states: Dict[str, RotationState] = {}

    def _visible_bookings(self) -> Dict[str, Booking]:
        return {**self._repository.bookings, **self._bookings}

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        return _confirmed_overlapping(
            self._visible_bookings(), user_id, window
        )

    async def get_rotation_state(self, booking_link_id: str) -> RotationState:
        state = self._rotation_states.get(
            booking_link_id
        ) or self._repository.rotation_states.get(booking_link_id)
        if state is None:
            return RotationState(booking_link_id=booking_link_id)
        return state.model_copy(deep=True)

    async def save_rotation_state(self, state: RotationState) -> None:
        self._rotation_states[state.booking_link_id] = state

    async def insert_booking(self, booking: Booking) -> None:
        visible = self._visible_bookings()
        if booking.booking_id in visible:
            raise ValueError(f"Booking {booking.booking_id} already exists")
        if booking.status is BookingStatus.CONFIRMED and (
            _confirmed_overlapping(
                visible, booking.assigned_user_id, booking.window
            )
        ):
            raise SlotConflictError(booking.assigned_user_id)
        self._bookings[booking.booking_id] = booking

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._visible_bookings().get(booking_id)

    async def update_booking_status(
        self,
        booking: Booking,
        status: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        now = self._clock()
        update: Dict[str, object] = {"status": status, "updated_at": now}
        if status is BookingStatus.CANCELLED:
            update["cancelled_at"] = now
            update["cancellation_reason"] = reason
        updated = booking.model_copy(update=update)
        self._bookings[booking.booking_id] = updated
        return updated

    def commit(self) -> None:
        self._repository.bookings.update(self._bookings)
        self._repository.rotation_states.update(self._rotation_states)
        logger.debug(
            "Committed reservation session",
            extra={
                "bookings_written": len(self._bookings),
                "rotation_states_written": len(self._rotation_states),
            },
        )


class MemoryReservationStore(ReservationStore):
    """
    ReservationStore using in-process locks, one per lock key.

    A key's lock lives only while some reservation holds or waits for it.
    """

    def __init__(
        self,
        repository: MemoryBookingRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self._clock = clock or _utc_now
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def active_lock_keys(self) -> List[str]:
        return sorted(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: str) -> None:
        users = self._lock_users[key] - 1
        if users:
            self._lock_users[key] = users
        else:
            del self._lock_users[key]
            del self._locks[key]

    @asynccontextmanager
    async def reserve(
        self, lock_keys: Sequence[str], timeout: timedelta
    ) -> AsyncIterator[MemoryReservationSession]:
        keys = sorted(set(lock_keys))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout.total_seconds()
        checked_out: List[str] = []
        acquired: List[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                checked_out.append(key)
                if lock.locked():
                    remaining = max(deadline - loop.time(), 0.0)
                    try:
                        await asyncio.wait_for(
                            lock.acquire(), timeout=remaining
                        )
                    except asyncio.TimeoutError:
                        raise ReservationContentionError(keys) from None
                else:
                    await lock.acquire()
                acquired.append(lock)

            session = MemoryReservationSession(self.repository, self._clock)
            yield session
            session.commit()
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)
