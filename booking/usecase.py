"""
Booking use cases.

Use case logic is framework-agnostic: every collaborator is injected as a
protocol implementation and validated at construction.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from .assignment import (
    candidate_pool,
    rejection_for,
    release_rotation_load,
    reservation_lock_keys,
    select_assignee,
)
from .availability import (
    busy_horizon,
    compute_freeness,
    generate_candidate_windows,
    merge_slots,
)
from .domain import (
    AssignmentMethod,
    AvailabilityRule,
    AvailableSlot,
    Booking,
    BookingLink,
    BookingOutcome,
    BookingSideEffectsJob,
    BookingStatus,
    BusyInterval,
    CalendarSyncOutcome,
    Freeness,
    RejectionReason,
    RequesterInfo,
    TimeWindow,
)
from .exceptions import (
    BookingLinkNotFoundError,
    BookingNotFoundError,
    ReservationContentionError,
    SlotConflictError,
)
from .repositories import (
    AvailabilityRuleRepository,
    BookingLinkRepository,
    BookingRepository,
    CalendarSourceAdapter,
    ReservationSession,
    ReservationStore,
    SideEffectDispatcher,
)
from .side_effects import BookingSideEffectsUseCase
from .validation import ensure_repository_protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_LOCK_TIMEOUT = timedelta(seconds=5)
DEFAULT_DURATION_TOLERANCE = timedelta(minutes=1)
DEFAULT_SLOT_INCREMENT = timedelta(minutes=30)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def load_rules(
    rule_repo: AvailabilityRuleRepository, user_ids: Sequence[str]
) -> Dict[str, AvailabilityRule]:
    """Rules for every user, falling back to the default rule."""
    rules = await asyncio.gather(
        *(rule_repo.get_availability_rule(user_id) for user_id in user_ids)
    )
    return {
        user_id: rule or AvailabilityRule.default_for(user_id)
        for user_id, rule in zip(user_ids, rules)
    }


class CreateBookingUseCase:
    """
    Turns a requested window on a booking link into a confirmed booking or
    a typed rejection.

    External busy intervals are read before entering the critical section.
    Inside it, confirmed bookings are re-read, an assignee is chosen, and
    the booking is written together with the advanced rotation state.
    Side effects are handed to the dispatcher only after that commit.
    """

    def __init__(
        self,
        link_repo: BookingLinkRepository,
        rule_repo: AvailabilityRuleRepository,
        booking_repo: BookingRepository,
        reservation_store: ReservationStore,
        calendar_source: CalendarSourceAdapter,
        side_effect_dispatcher: SideEffectDispatcher,
        lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT,
        duration_tolerance: timedelta = DEFAULT_DURATION_TOLERANCE,
        clock: Optional[Clock] = None,
    ) -> None:
        self.link_repo = ensure_repository_protocol(
            link_repo, BookingLinkRepository
        )
        self.rule_repo = ensure_repository_protocol(
            rule_repo, AvailabilityRuleRepository
        )
        self.booking_repo = ensure_repository_protocol(
            booking_repo, BookingRepository
        )
        self.reservation_store = ensure_repository_protocol(
            reservation_store, ReservationStore
        )
        self.calendar_source = ensure_repository_protocol(
            calendar_source, CalendarSourceAdapter
        )
        self.side_effect_dispatcher = ensure_repository_protocol(
            side_effect_dispatcher, SideEffectDispatcher
        )
        self.lock_timeout = lock_timeout
        self.duration_tolerance = duration_tolerance
        self.clock = clock or _utc_now

    async def create_booking(
        self,
        booking_link_id: str,
        window: TimeWindow,
        requester: RequesterInfo,
    ) -> BookingOutcome:
        """
        Book ``window`` on the given link.

        Args:
            booking_link_id: Link being booked
            window: Requested window
            requester: The visitor making the booking

        Returns:
            BookingOutcome with the confirmed booking, or the rejection
            reason. Side-effect failures never turn into rejections.
        """
        now = self.clock()
        log_extra = {
            "link_id": booking_link_id,
            "window_start": window.start.isoformat(),
            "window_end": window.end.isoformat(),
        }
        logger.info("Booking requested", extra=log_extra)

        link = await self.link_repo.get_booking_link(booking_link_id)
        if link is None:
            return self._rejected(
                BookingOutcome.reject(
                    RejectionReason.LINK_NOT_FOUND, "Booking link not found"
                ),
                log_extra,
            )
        rejection = self._validate_request(link, window, now)
        if rejection is not None:
            return self._rejected(rejection, log_extra)

        candidates = candidate_pool(link)
        rules = await load_rules(self.rule_repo, candidates)
        external_busy = await self._external_busy(window, rules)
        booking_id = await self.booking_repo.generate_booking_id()

        try:
            outcome = await self._reserve(
                link, window, requester, booking_id, rules, external_busy, now
            )
        except ReservationContentionError as e:
            logger.warning(
                "Booking contention",
                extra={
                    **log_extra,
                    "lock_keys": e.lock_keys,
                    "error": str(e),
                },
            )
            return BookingOutcome.reject(RejectionReason.CONTENTION, str(e))
        except SlotConflictError as e:
            logger.warning(
                "Storage rejected overlapping booking",
                extra={**log_extra, "user_id": e.user_id},
            )
            return BookingOutcome.reject(RejectionReason.CONFLICT, str(e))

        if outcome.booking is None:
            return self._rejected(outcome, log_extra)

        logger.info(
            "Booking confirmed",
            extra={
                **log_extra,
                "booking_id": outcome.booking.booking_id,
                "assigned_user_id": outcome.booking.assigned_user_id,
            },
        )
        await self._dispatch_side_effects(outcome.booking, link)
        return outcome

    @staticmethod
    def _rejected(
        outcome: BookingOutcome, log_extra: Dict[str, Any]
    ) -> BookingOutcome:
        logger.info(
            "Booking request rejected",
            extra={**log_extra, "reason": outcome.rejection},
        )
        return outcome

    def _validate_request(
        self,
        link: BookingLink,
        window: TimeWindow,
        now: datetime,
    ) -> Optional[BookingOutcome]:
        if not link.is_active:
            return BookingOutcome.reject(
                RejectionReason.LINK_INACTIVE, "Booking link is inactive"
            )
        horizon_end = now + timedelta(days=link.availability_window_days)
        if window.start < now or window.start > horizon_end:
            return BookingOutcome.reject(
                RejectionReason.OUT_OF_WINDOW,
                f"Bookings are accepted up to "
                f"{link.availability_window_days} days ahead",
            )
        if abs(window.duration - link.duration) > self.duration_tolerance:
            return BookingOutcome.reject(
                RejectionReason.DURATION_MISMATCH,
                f"Expected {link.duration_minutes} minutes",
            )
        return None

    async def _external_busy(
        self, window: TimeWindow, rules: Dict[str, AvailabilityRule]
    ) -> Dict[str, List[BusyInterval]]:
        user_ids = list(rules)
        results = await asyncio.gather(
            *(
                self.calendar_source.list_busy_intervals(
                    user_id, busy_horizon(window, rules[user_id])
                )
                for user_id in user_ids
            )
        )
        return dict(zip(user_ids, results))

    async def _reserve(
        self,
        link: BookingLink,
        window: TimeWindow,
        requester: RequesterInfo,
        booking_id: str,
        rules: Dict[str, AvailabilityRule],
        external_busy: Dict[str, List[BusyInterval]],
        now: datetime,
    ) -> BookingOutcome:
        lock_keys = reservation_lock_keys(link)
        async with self.reservation_store.reserve(
            lock_keys, self.lock_timeout
        ) as session:
            rotation = await session.get_rotation_state(link.link_id)

            async def evaluate(user_id: str) -> Freeness:
                rule = rules[user_id]
                confirmed = await session.list_confirmed_bookings(
                    user_id, busy_horizon(window, rule)
                )
                busy = [b.as_busy_interval() for b in confirmed]
                busy.extend(external_busy.get(user_id, []))
                return compute_freeness(user_id, window, rule, busy, now)

            decision = await select_assignee(link, rotation, evaluate, now)
            if decision.assigned_user_id is None:
                reason, detail = rejection_for(decision)
                return BookingOutcome.reject(reason, detail)

            pending = Booking(
                booking_id=booking_id,
                booking_link_id=link.link_id,
                assigned_user_id=decision.assigned_user_id,
                window=window,
                requester=requester,
                status=BookingStatus.PENDING,
                created_at=now,
            )
            # Confirmed in the same transaction as the rotation update
            booking = pending.model_copy(
                update={"status": BookingStatus.CONFIRMED, "updated_at": now}
            )
            await session.insert_booking(booking)
            if decision.rotation is not None:
                await session.save_rotation_state(decision.rotation)
        return BookingOutcome.accept(booking)

    async def _dispatch_side_effects(
        self, booking: Booking, link: BookingLink
    ) -> None:
        try:
            await self.side_effect_dispatcher.dispatch(
                BookingSideEffectsJob(booking=booking, link=link)
            )
        except Exception as e:
            logger.error(
                "Failed to dispatch booking side effects",
                extra={
                    "booking_id": booking.booking_id,
                    "operation": "dispatch",
                    "error": str(e),
                },
                exc_info=True,
            )
            try:
                await self.booking_repo.mark_calendar_sync_failed(
                    booking.booking_id, f"Side effects not dispatched: {e}"
                )
            except Exception:
                logger.error(
                    "Could not flag booking after dispatch failure",
                    extra={"booking_id": booking.booking_id},
                    exc_info=True,
                )


class CancelBookingUseCase:
    """
    Cancels a confirmed booking.

    The status transition and the load release for team links commit
    together under the same locks bookings are created with.
    """

    def __init__(
        self,
        link_repo: BookingLinkRepository,
        booking_repo: BookingRepository,
        reservation_store: ReservationStore,
        side_effects: Optional[BookingSideEffectsUseCase] = None,
        lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT,
        clock: Optional[Clock] = None,
    ) -> None:
        self.link_repo = ensure_repository_protocol(
            link_repo, BookingLinkRepository
        )
        self.booking_repo = ensure_repository_protocol(
            booking_repo, BookingRepository
        )
        self.reservation_store = ensure_repository_protocol(
            reservation_store, ReservationStore
        )
        self.side_effects = side_effects
        self.lock_timeout = lock_timeout
        self.clock = clock or _utc_now

    async def cancel_booking(
        self, booking_id: str, reason: Optional[str] = None
    ) -> Booking:
        """
        Cancel a booking. Cancelling twice returns the cancelled booking.

        Raises:
            BookingNotFoundError: If the booking does not exist
            BookingLinkNotFoundError: If its link no longer exists
            ValueError: If the booking is not confirmed
            ReservationContentionError: If the locks time out
        """
        booking = await self.booking_repo.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.status is BookingStatus.CANCELLED:
            return booking

        link = await self.link_repo.get_booking_link(booking.booking_link_id)
        if link is None:
            raise BookingLinkNotFoundError(booking.booking_link_id)

        lock_keys = sorted(
            set(reservation_lock_keys(link))
            | {f"user:{booking.assigned_user_id}"}
        )
        async with self.reservation_store.reserve(
            lock_keys, self.lock_timeout
        ) as session:
            cancelled = await self._cancel_locked(
                session, link, booking_id, reason
            )

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": booking_id,
                "link_id": link.link_id,
                "reason": reason,
            },
        )
        if self.side_effects is not None:
            await self.side_effects.notify_cancellation(cancelled, link)
        return cancelled

    async def _cancel_locked(
        self,
        session: ReservationSession,
        link: BookingLink,
        booking_id: str,
        reason: Optional[str],
    ) -> Booking:
        current = await session.get_booking(booking_id)
        if current is None:
            raise BookingNotFoundError(booking_id)
        if current.status is BookingStatus.CANCELLED:
            return current
        if current.status is not BookingStatus.CONFIRMED:
            raise ValueError(
                f"Cannot cancel booking {booking_id} in status "
                f"{current.status.value}"
            )

        cancelled = await session.update_booking_status(
            current, BookingStatus.CANCELLED, reason
        )
        if link.assignment_method is not AssignmentMethod.SPECIFIC:
            rotation = await session.get_rotation_state(link.link_id)
            await session.save_rotation_state(
                release_rotation_load(
                    rotation, current.assigned_user_id, self.clock()
                )
            )
        return cancelled


class RetryCalendarSyncUseCase:
    """Re-runs the calendar step for bookings flagged CalendarSyncFailed."""

    def __init__(
        self,
        link_repo: BookingLinkRepository,
        booking_repo: BookingRepository,
        side_effects: BookingSideEffectsUseCase,
    ) -> None:
        self.link_repo = ensure_repository_protocol(
            link_repo, BookingLinkRepository
        )
        self.booking_repo = ensure_repository_protocol(
            booking_repo, BookingRepository
        )
        self.side_effects = side_effects

    async def retry(self, booking_id: str) -> CalendarSyncOutcome:
        booking = await self.booking_repo.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.status is not BookingStatus.CONFIRMED:
            logger.info(
                "Not syncing booking that is not confirmed",
                extra={
                    "booking_id": booking_id,
                    "status": booking.status.value,
                },
            )
            return CalendarSyncOutcome.SKIPPED
        if (
            booking.external_event_ref is not None
            and not booking.calendar_sync_failed
        ):
            return CalendarSyncOutcome.SYNCED

        link = await self.link_repo.get_booking_link(booking.booking_link_id)
        if link is None:
            raise BookingLinkNotFoundError(booking.booking_link_id)
        outcome, _ = await self.side_effects.sync_calendar(booking, link)
        return outcome

    async def retry_failed(
        self, limit: int = 50
    ) -> Dict[str, CalendarSyncOutcome]:
        """Retry every flagged booking, up to ``limit``."""
        failures = await self.booking_repo.list_calendar_sync_failures(limit)
        results: Dict[str, CalendarSyncOutcome] = {}
        for booking in failures:
            results[booking.booking_id] = await self.retry(booking.booking_id)
        return results


class ListAvailableSlotsUseCase:
    """
    Lists bookable slots of a link over a range.

    Slots of the link's duration start every ``slot_increment`` within each
    candidate's working hours; a slot is listed when at least one candidate
    is free for it. Reads are not locked, so a listed slot can still be
    taken before it is booked.
    """

    def __init__(
        self,
        link_repo: BookingLinkRepository,
        rule_repo: AvailabilityRuleRepository,
        booking_repo: BookingRepository,
        calendar_source: CalendarSourceAdapter,
        slot_increment: timedelta = DEFAULT_SLOT_INCREMENT,
        clock: Optional[Clock] = None,
    ) -> None:
        self.link_repo = ensure_repository_protocol(
            link_repo, BookingLinkRepository
        )
        self.rule_repo = ensure_repository_protocol(
            rule_repo, AvailabilityRuleRepository
        )
        self.booking_repo = ensure_repository_protocol(
            booking_repo, BookingRepository
        )
        self.calendar_source = ensure_repository_protocol(
            calendar_source, CalendarSourceAdapter
        )
        self.slot_increment = slot_increment
        self.clock = clock or _utc_now

    async def list_available_slots(
        self, booking_link_id: str, start: datetime, end: datetime
    ) -> List[AvailableSlot]:
        link = await self.link_repo.get_booking_link(booking_link_id)
        if link is None:
            raise BookingLinkNotFoundError(booking_link_id)
        if not link.is_active:
            return []

        now = self.clock()
        range_start = max(start, now)
        range_end = min(
            end, now + timedelta(days=link.availability_window_days)
        )
        if range_end <= range_start:
            return []
        range_window = TimeWindow(start=range_start, end=range_end)

        candidates = candidate_pool(link)
        rules = await load_rules(self.rule_repo, candidates)
        free_lists = await asyncio.gather(
            *(
                self._free_windows(
                    user_id, rules[user_id], link, range_window, now
                )
                for user_id in candidates
            )
        )
        slots = merge_slots(dict(zip(candidates, free_lists)))
        logger.info(
            "Listed available slots",
            extra={
                "link_id": booking_link_id,
                "range_start": range_start.isoformat(),
                "range_end": range_end.isoformat(),
                "slot_count": len(slots),
            },
        )
        return slots

    async def _free_windows(
        self,
        user_id: str,
        rule: AvailabilityRule,
        link: BookingLink,
        range_window: TimeWindow,
        now: datetime,
    ) -> List[TimeWindow]:
        windows = list(
            generate_candidate_windows(
                range_window, link.duration, self.slot_increment, rule
            )
        )
        if not windows:
            return []

        horizon = TimeWindow(
            start=busy_horizon(windows[0], rule).start,
            end=busy_horizon(windows[-1], rule).end,
        )
        confirmed, external = await asyncio.gather(
            self.booking_repo.list_confirmed_bookings(user_id, horizon),
            self.calendar_source.list_busy_intervals(user_id, horizon),
        )
        busy = [b.as_busy_interval() for b in confirmed] + list(external)
        return [
            window
            for window in windows
            if compute_freeness(user_id, window, rule, busy, now).available
        ]
