"""
Availability and booking engine.

This package resolves who is free when, assigns team bookings fairly, and
commits bookings without double-booking anyone. Backends (PostgreSQL,
in-memory, calendar providers, Temporal) live under ``booking.repos``.
"""

from .domain import (
    AssignmentMethod,
    AvailabilityRule,
    AvailableSlot,
    Booking,
    BookingLink,
    BookingOutcome,
    BookingStatus,
    BusyInterval,
    CalendarConnection,
    Freeness,
    RejectionReason,
    RequesterInfo,
    RotationState,
    TimeWindow,
)
from .availability import compute_freeness
from .assignment import select_assignee
from .side_effects import BookingSideEffectsUseCase
from .usecase import (
    CancelBookingUseCase,
    CreateBookingUseCase,
    ListAvailableSlotsUseCase,
    RetryCalendarSyncUseCase,
)

__all__ = [
    # Domain models
    "AssignmentMethod",
    "AvailabilityRule",
    "AvailableSlot",
    "Booking",
    "BookingLink",
    "BookingOutcome",
    "BookingStatus",
    "BusyInterval",
    "CalendarConnection",
    "Freeness",
    "RejectionReason",
    "RequesterInfo",
    "RotationState",
    "TimeWindow",
    # Pure logic
    "compute_freeness",
    "select_assignee",
    # Use cases
    "BookingSideEffectsUseCase",
    "CancelBookingUseCase",
    "CreateBookingUseCase",
    "ListAvailableSlotsUseCase",
    "RetryCalendarSyncUseCase",
]
