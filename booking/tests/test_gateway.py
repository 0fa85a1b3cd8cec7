"""
Tests for CalendarSourceGateway: merging busy data across connections and
routing event writes to one connection.
"""

import pytest

from booking.calendar_gateway import (
    CalendarSourceGateway,
    choose_write_connection,
)
from booking.domain import CalendarEventRequest
from booking.exceptions import CalendarSourceUnavailableError
from booking.repos.memory import MemoryBookingConfigRepository
from booking.repos.mock.calendar import MockCalendarProviderAdapter
from booking.tests.factories import at, mock_connection, window

DAY = window(at(4, 0), 24 * 60)


def event_request(key: str = "booking-bkg-1") -> CalendarEventRequest:
    return CalendarEventRequest(
        window=window(at(4, 10)), title="Intro", idempotency_key=key
    )


class TestChooseWriteConnection:
    def test_prefers_primary(self) -> None:
        secondary = mock_connection(connection_id="a", is_primary=False)
        primary = mock_connection(connection_id="b", is_primary=True)
        assert choose_write_connection([secondary, primary]) == primary

    def test_falls_back_to_first_active(self) -> None:
        inactive_primary = mock_connection(
            connection_id="a", is_primary=True, is_active=False
        )
        active = mock_connection(connection_id="b", is_primary=False)
        assert choose_write_connection([inactive_primary, active]) == active

    def test_none_without_active_connections(self) -> None:
        assert (
            choose_write_connection([mock_connection(is_active=False)])
            is None
        )


class TestCalendarSourceGateway:
    def setup_method(self) -> None:
        self.work = MockCalendarProviderAdapter(provider="mock")
        self.personal = MockCalendarProviderAdapter(provider="other")
        self.config = MemoryBookingConfigRepository(
            connections=[
                mock_connection(connection_id="work", provider="mock"),
                mock_connection(
                    connection_id="personal",
                    provider="other",
                    is_primary=False,
                ),
            ]
        )
        self.gateway = CalendarSourceGateway(
            self.config, {"mock": self.work, "other": self.personal}
        )

    @pytest.mark.asyncio
    async def test_merges_busy_intervals_from_every_connection(self) -> None:
        self.work.add_busy("alice", window(at(4, 10)))
        self.personal.add_busy("alice", window(at(4, 12)))

        intervals = await self.gateway.list_busy_intervals("alice", DAY)

        assert sorted(i.window.start for i in intervals) == [
            at(4, 10),
            at(4, 12),
        ]
        assert {i.provider for i in intervals} == {"mock", "other"}

    @pytest.mark.asyncio
    async def test_failing_provider_is_skipped(self) -> None:
        self.work.add_busy("alice", window(at(4, 10)))
        self.personal.fail_busy_reads = "token revoked"

        intervals = await self.gateway.list_busy_intervals("alice", DAY)

        assert [i.window.start for i in intervals] == [at(4, 10)]

    @pytest.mark.asyncio
    async def test_inactive_connections_are_ignored(self) -> None:
        self.config.add_connection(
            mock_connection(connection_id="personal", provider="other")
            .model_copy(update={"is_active": False})
        )
        self.personal.add_busy("alice", window(at(4, 12)))

        assert await self.gateway.list_busy_intervals("alice", DAY) == []

    @pytest.mark.asyncio
    async def test_unknown_provider_contributes_nothing(self) -> None:
        self.config.add_connection(
            mock_connection(connection_id="x", provider="exchange")
        )
        assert await self.gateway.list_busy_intervals("alice", DAY) == []

    @pytest.mark.asyncio
    async def test_user_without_connections(self) -> None:
        assert await self.gateway.list_busy_intervals("nobody", DAY) == []
        assert (
            await self.gateway.create_event("nobody", event_request()) is None
        )

    @pytest.mark.asyncio
    async def test_event_is_written_to_primary_connection(self) -> None:
        ref = await self.gateway.create_event("alice", event_request())

        assert ref.provider == "mock"
        assert self.work.create_event_calls == 1
        assert self.personal.create_event_calls == 0

    @pytest.mark.asyncio
    async def test_missing_adapter_for_write_connection_raises(self) -> None:
        gateway = CalendarSourceGateway(
            MemoryBookingConfigRepository(
                connections=[mock_connection(provider="exchange")]
            ),
            {"mock": self.work},
        )
        with pytest.raises(CalendarSourceUnavailableError):
            await gateway.create_event("alice", event_request())
