"""
Exceptions raised by booking repositories and adapters.

Business outcomes (rejections) are returned as values; these exceptions
cover infrastructure conditions the use cases translate or propagate.
"""

from typing import Optional, Sequence


class BookingEngineError(Exception):
    """Base class for booking engine errors."""


class ReservationContentionError(BookingEngineError):
    """The critical section could not be entered or finished in time."""

    def __init__(
        self, lock_keys: Sequence[str], message: Optional[str] = None
    ) -> None:
        self.lock_keys = list(lock_keys)
        super().__init__(
            message
            or f"Timed out waiting for reservation locks {self.lock_keys}"
        )


class SlotConflictError(BookingEngineError):
    """Storage refused a booking overlapping another confirmed booking."""

    def __init__(self, user_id: str, message: Optional[str] = None) -> None:
        self.user_id = user_id
        super().__init__(
            message or f"Overlapping confirmed booking for user {user_id}"
        )


class BookingNotFoundError(BookingEngineError):
    def __init__(self, booking_id: str) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class BookingLinkNotFoundError(BookingEngineError):
    def __init__(self, link_id: str) -> None:
        self.link_id = link_id
        super().__init__(f"Booking link {link_id} not found")


class CalendarSourceUnavailableError(BookingEngineError):
    """No adapter is registered for a connection's provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No calendar adapter for provider '{provider}'")


class CalendarProviderError(BookingEngineError):
    """A calendar provider call failed."""

    def __init__(
        self, provider: str, operation: str, message: str
    ) -> None:
        self.provider = provider
        self.operation = operation
        super().__init__(f"{provider} {operation} failed: {message}")
