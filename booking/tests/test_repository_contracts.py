"""
Repository contract tests to verify that all implementations comply with
their protocol contracts.

Backends that need infrastructure (PostgreSQL) reuse these mixins in their
own integration suites; here they run against the in-memory and mock
implementations.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Tuple

import pytest

from booking.domain import (
    BookingStatus,
    BusySource,
    CalendarConnection,
    CalendarEventRequest,
    ExternalEventRef,
    RotationState,
)
from booking.exceptions import (
    BookingNotFoundError,
    CalendarProviderError,
    ReservationContentionError,
    SlotConflictError,
)
from booking.repositories import (
    BookingRepository,
    CalendarProviderAdapter,
    ReservationStore,
)
from booking.tests.factories import (
    NOW,
    at,
    minimal_booking,
    mock_connection,
    window,
)

TIMEOUT = timedelta(seconds=1)


class BookingStorageContractTestMixin(ABC):
    """
    Contract test mixin for BookingRepository and ReservationStore pairs
    sharing one backend.

    Subclasses must implement create_storage() to return a configured
    repository and store for testing.
    """

    @abstractmethod
    async def create_storage(
        self,
    ) -> Tuple[BookingRepository, ReservationStore]:
        """Create a repository and store over the same backend."""
        pass

    async def insert(self, store: ReservationStore, booking) -> None:
        async with store.reserve(["test"], TIMEOUT) as session:
            await session.insert_booking(booking)

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self) -> None:
        repo, _ = await self.create_storage()
        ids = {await repo.generate_booking_id() for _ in range(20)}
        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_committed_booking_is_readable(self) -> None:
        repo, store = await self.create_storage()
        booking = minimal_booking(booking_id="bkg-1")

        await self.insert(store, booking)

        assert await repo.get_booking("bkg-1") == booking
        assert await repo.get_booking("bkg-missing") is None

    @pytest.mark.asyncio
    async def test_failed_section_writes_nothing(self) -> None:
        repo, store = await self.create_storage()

        with pytest.raises(RuntimeError):
            async with store.reserve(["test"], TIMEOUT) as session:
                await session.insert_booking(minimal_booking("bkg-1"))
                await session.save_rotation_state(
                    RotationState(booking_link_id="rr", last_assigned_index=1)
                )
                raise RuntimeError("abort")

        assert await repo.get_booking("bkg-1") is None
        async with store.reserve(["test"], TIMEOUT) as session:
            rotation = await session.get_rotation_state("rr")
        assert rotation.last_assigned_index == -1

    @pytest.mark.asyncio
    async def test_overlapping_confirmed_booking_is_refused(self) -> None:
        _, store = await self.create_storage()
        await self.insert(store, minimal_booking("bkg-1", start=at(4, 10)))

        with pytest.raises(SlotConflictError):
            await self.insert(
                store, minimal_booking("bkg-2", start=at(4, 10, 15))
            )

    @pytest.mark.asyncio
    async def test_adjacent_and_other_user_bookings_are_allowed(
        self,
    ) -> None:
        repo, store = await self.create_storage()
        await self.insert(store, minimal_booking("bkg-1", start=at(4, 10)))
        await self.insert(store, minimal_booking("bkg-2", start=at(4, 10, 30)))
        await self.insert(
            store,
            minimal_booking("bkg-3", assigned_user_id="bob", start=at(4, 10)),
        )

        alice = await repo.list_confirmed_bookings(
            "alice", window(at(4, 0), 24 * 60)
        )
        assert [b.booking_id for b in alice] == ["bkg-1", "bkg-2"]

    @pytest.mark.asyncio
    async def test_cancelled_bookings_are_not_busy(self) -> None:
        repo, store = await self.create_storage()
        booking = minimal_booking("bkg-1", start=at(4, 10))
        await self.insert(store, booking)

        async with store.reserve(["test"], TIMEOUT) as session:
            cancelled = await session.update_booking_status(
                booking, BookingStatus.CANCELLED, "moved"
            )

        assert cancelled.cancellation_reason == "moved"
        assert cancelled.cancelled_at is not None
        assert await repo.list_confirmed_bookings(
            "alice", window(at(4, 10))
        ) == []
        await self.insert(store, minimal_booking("bkg-2", start=at(4, 10)))

    @pytest.mark.asyncio
    async def test_rotation_state_round_trips(self) -> None:
        _, store = await self.create_storage()
        state = RotationState(
            booking_link_id="rr",
            last_assigned_index=2,
            member_loads={"alice": 3, "bob": 1},
            updated_at=NOW,
        )

        async with store.reserve(["link:rr"], TIMEOUT) as session:
            await session.save_rotation_state(state)
        async with store.reserve(["link:rr"], TIMEOUT) as session:
            loaded = await session.get_rotation_state("rr")

        assert loaded.last_assigned_index == 2
        assert loaded.member_loads == {"alice": 3, "bob": 1}

    @pytest.mark.asyncio
    async def test_calendar_sync_flags(self) -> None:
        repo, store = await self.create_storage()
        await self.insert(store, minimal_booking("bkg-1"))
        ref = ExternalEventRef(
            provider="mock", calendar_id="primary", event_id="evt-1"
        )

        await repo.mark_calendar_sync_failed("bkg-1", "provider down")
        failures = await repo.list_calendar_sync_failures(10)
        assert [b.booking_id for b in failures] == ["bkg-1"]
        assert failures[0].calendar_sync_error == "provider down"

        await repo.record_calendar_sync("bkg-1", ref)
        synced = await repo.get_booking("bkg-1")
        assert synced.external_event_ref == ref
        assert not synced.calendar_sync_failed
        assert await repo.list_calendar_sync_failures(10) == []

    @pytest.mark.asyncio
    async def test_sync_flags_need_existing_booking(self) -> None:
        repo, _ = await self.create_storage()
        with pytest.raises(BookingNotFoundError):
            await repo.mark_calendar_sync_failed("bkg-missing", "x")

    @pytest.mark.asyncio
    async def test_held_lock_times_out_as_contention(self) -> None:
        _, store = await self.create_storage()

        async with store.reserve(["user:bob"], TIMEOUT):
            with pytest.raises(ReservationContentionError) as exc_info:
                async with store.reserve(
                    ["user:alice", "user:bob"], timedelta(milliseconds=50)
                ):
                    pass

        assert exc_info.value.lock_keys == ["user:alice", "user:bob"]
        # Locks taken before the timeout were released
        async with store.reserve(["user:alice"], timedelta(milliseconds=50)):
            pass

    @pytest.mark.asyncio
    async def test_sections_on_disjoint_keys_run_concurrently(self) -> None:
        _, store = await self.create_storage()
        entered = asyncio.Event()

        async def holder() -> None:
            async with store.reserve(["user:alice"], TIMEOUT):
                entered.set()
                await asyncio.sleep(0.05)

        task = asyncio.create_task(holder())
        await entered.wait()
        async with store.reserve(["user:bob"], timedelta(milliseconds=10)):
            pass
        await task


class CalendarProviderAdapterContractTestMixin(ABC):
    """
    Contract test mixin for CalendarProviderAdapter implementations.
    """

    @abstractmethod
    async def create_adapter(self) -> CalendarProviderAdapter:
        pass

    def connection(self) -> CalendarConnection:
        return mock_connection("alice")

    @pytest.mark.asyncio
    async def test_busy_intervals_are_external_and_owned(self) -> None:
        adapter = await self.create_adapter()

        intervals = await adapter.list_busy_intervals(
            self.connection(), window(at(4, 0), 24 * 60)
        )

        assert isinstance(intervals, list)
        for interval in intervals:
            assert interval.source is BusySource.EXTERNAL
            assert interval.owner_id == "alice"

    @pytest.mark.asyncio
    async def test_create_event_is_idempotent(self) -> None:
        adapter = await self.create_adapter()
        request = CalendarEventRequest(
            window=window(at(4, 10)),
            title="Intro",
            idempotency_key="booking-bkg-1",
        )

        first = await adapter.create_event(self.connection(), request)
        second = await adapter.create_event(self.connection(), request)

        assert isinstance(first, ExternalEventRef)
        assert first.event_id == second.event_id


class TestMemoryBookingStorageContract(BookingStorageContractTestMixin):
    """Test the memory repository and store against the contract."""

    async def create_storage(
        self,
    ) -> Tuple[BookingRepository, ReservationStore]:
        from booking.repos.memory import (
            MemoryBookingRepository,
            MemoryReservationStore,
        )

        repo = MemoryBookingRepository()
        return repo, MemoryReservationStore(repo)


class TestMemoryReservationLocks:
    def create_store(self):
        from booking.repos.memory import (
            MemoryBookingRepository,
            MemoryReservationStore,
        )

        return MemoryReservationStore(MemoryBookingRepository())

    @pytest.mark.asyncio
    async def test_locks_are_dropped_after_section(self) -> None:
        store = self.create_store()

        async with store.reserve(["link:a", "user:alice"], TIMEOUT):
            assert store.active_lock_keys == ["link:a", "user:alice"]

        assert store.active_lock_keys == []

    @pytest.mark.asyncio
    async def test_lock_outlives_holder_while_others_wait(self) -> None:
        store = self.create_store()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with store.reserve(["user:alice"], TIMEOUT):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()

        async def waiter() -> None:
            async with store.reserve(["user:alice"], TIMEOUT):
                assert store.active_lock_keys == ["user:alice"]

        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        release.set()
        await task
        await waiting

        assert store.active_lock_keys == []

    @pytest.mark.asyncio
    async def test_timed_out_waiter_leaves_no_lock_behind(self) -> None:
        store = self.create_store()

        async with store.reserve(["user:bob"], TIMEOUT):
            with pytest.raises(ReservationContentionError):
                async with store.reserve(
                    ["user:alice", "user:bob"], timedelta(milliseconds=20)
                ):
                    pass
            assert store.active_lock_keys == ["user:bob"]

        assert store.active_lock_keys == []


class TestMockCalendarProviderContract(
    CalendarProviderAdapterContractTestMixin
):
    """Test MockCalendarProviderAdapter against the contract."""

    async def create_adapter(self) -> CalendarProviderAdapter:
        from booking.repos.mock.calendar import MockCalendarProviderAdapter

        adapter = MockCalendarProviderAdapter()
        adapter.add_busy("alice", window(at(4, 10)))
        adapter.add_busy("bob", window(at(4, 11)))
        return adapter


class TestMockCalendarProviderFailures:
    @pytest.mark.asyncio
    async def test_simulated_outages_raise_provider_errors(self) -> None:
        from booking.repos.mock.calendar import MockCalendarProviderAdapter

        adapter = MockCalendarProviderAdapter()
        adapter.fail_busy_reads = "timeout"
        adapter.fail_create_event = "quota"

        with pytest.raises(CalendarProviderError, match="timeout"):
            await adapter.list_busy_intervals(
                mock_connection(), window(at(4, 10))
            )
        with pytest.raises(CalendarProviderError, match="quota"):
            await adapter.create_event(
                mock_connection(),
                CalendarEventRequest(
                    window=window(at(4, 10)),
                    title="Intro",
                    idempotency_key="booking-bkg-1",
                ),
            )
        assert adapter.create_event_calls == 1
