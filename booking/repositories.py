"""
Defines the repository and adapter protocols the booking engine depends on.

Use cases depend only on these protocols. Concrete implementations live in
``booking.repos.<backend>`` (PostgreSQL, in-memory, Google, Temporal).
"""

from datetime import timedelta
from typing import (
    AsyncContextManager,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from .domain import (
    AvailabilityRule,
    Booking,
    BookingLink,
    BookingSideEffectsJob,
    BookingStatus,
    BusyInterval,
    CalendarConnection,
    CalendarEventRequest,
    ExternalEventRef,
    NotificationRequest,
    ReminderRequest,
    RotationState,
    TimeWindow,
)


# --- Read-only configuration ---


@runtime_checkable
class BookingLinkRepository(Protocol):
    """Read access to published booking links."""

    async def get_booking_link(self, link_id: str) -> Optional[BookingLink]:
        """Retrieves a booking link by id, or None if it does not exist."""
        ...


@runtime_checkable
class AvailabilityRuleRepository(Protocol):
    """Read access to per-user availability rules."""

    async def get_availability_rule(
        self, user_id: str
    ) -> Optional[AvailabilityRule]:
        """
        Retrieves the rule for a user, or None when the user never
        configured one (callers fall back to the default rule).
        """
        ...


@runtime_checkable
class CalendarConnectionRepository(Protocol):
    """Read access to the external calendars attached to each user."""

    async def list_calendar_connections(
        self, owner_id: str
    ) -> List[CalendarConnection]:
        """Lists every connection of a user, active or not."""
        ...


# --- Bookings and the critical section ---


@runtime_checkable
class BookingRepository(Protocol):
    """
    Booking reads and post-commit updates made outside the critical
    section.

    Creation and status transitions go through a ReservationSession so that
    they commit together with the rotation ledger.
    """

    async def generate_booking_id(self) -> str:
        """Generates a unique booking identifier."""
        ...

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Retrieves a booking by id."""
        ...

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        """
        Lists confirmed bookings of a user overlapping ``window``.

        Non-locking read used for slot listing; booking decisions re-read
        inside a reservation session.
        """
        ...

    async def record_calendar_sync(
        self, booking_id: str, event_ref: ExternalEventRef
    ) -> None:
        """Stores the external event reference and clears any sync failure
        flag."""
        ...

    async def mark_calendar_sync_failed(
        self, booking_id: str, error: str
    ) -> None:
        """Flags the booking as CalendarSyncFailed with the last error."""
        ...

    async def list_calendar_sync_failures(
        self, limit: int
    ) -> List[Booking]:
        """Lists confirmed bookings still flagged CalendarSyncFailed."""
        ...


@runtime_checkable
class ReservationSession(Protocol):
    """
    Reads and writes made while holding the reservation locks.

    Every write is applied atomically when the session's ``reserve``
    context exits without error, and discarded otherwise.
    """

    async def list_confirmed_bookings(
        self, user_id: str, window: TimeWindow
    ) -> List[Booking]:
        """Lists confirmed bookings of a user overlapping ``window``."""
        ...

    async def get_rotation_state(self, booking_link_id: str) -> RotationState:
        """Returns the link's rotation state, or a fresh one."""
        ...

    async def save_rotation_state(self, state: RotationState) -> None: ...

    async def insert_booking(self, booking: Booking) -> None:
        """
        Inserts a new booking.

        Raises:
            SlotConflictError: If storage detects an overlapping confirmed
                booking for the same user.
        """
        ...

    async def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    async def update_booking_status(
        self,
        booking: Booking,
        status: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        """Transitions a booking's status and returns the updated booking."""
        ...


@runtime_checkable
class ReservationStore(Protocol):
    """Serializes booking decisions that share a lock key."""

    def reserve(
        self, lock_keys: Sequence[str], timeout: timedelta
    ) -> AsyncContextManager[ReservationSession]:
        """
        Acquires every lock key (in sorted order) and opens a transaction.

        Raises:
            ReservationContentionError: If the locks cannot be acquired or
                the transaction cannot finish within ``timeout``.
        """
        ...


# --- External collaborators ---


@runtime_checkable
class CalendarSourceAdapter(Protocol):
    """Uniform access to a user's external calendars."""

    async def list_busy_intervals(
        self, owner_id: str, window: TimeWindow
    ) -> List[BusyInterval]:
        """Lists busy intervals of the user overlapping ``window``."""
        ...

    async def create_event(
        self, owner_id: str, request: CalendarEventRequest
    ) -> Optional[ExternalEventRef]:
        """
        Creates an event in the user's calendar.

        Idempotent per ``request.idempotency_key``: repeating a call returns
        the reference of the event created the first time. Returns None
        when the user has no calendar to write to.
        """
        ...


@runtime_checkable
class CalendarProviderAdapter(Protocol):
    """One calendar provider (Google, mock, ...) addressed by connection."""

    async def list_busy_intervals(
        self, connection: CalendarConnection, window: TimeWindow
    ) -> List[BusyInterval]: ...

    async def create_event(
        self, connection: CalendarConnection, request: CalendarEventRequest
    ) -> ExternalEventRef: ...


@runtime_checkable
class ReminderScheduler(Protocol):
    async def schedule_reminder(self, request: ReminderRequest) -> None:
        """Schedules a reminder; repeated calls with the same dedupe key
        schedule it once."""
        ...


@runtime_checkable
class NotificationSender(Protocol):
    async def notify(self, request: NotificationRequest) -> None:
        """Sends a notification; repeated calls with the same dedupe key
        send it once."""
        ...


@runtime_checkable
class SideEffectDispatcher(Protocol):
    """Hands post-commit side effects off without waiting for them."""

    async def dispatch(self, job: BookingSideEffectsJob) -> None: ...
