"""
Dependency wiring for the CLI and the worker.

The container builds each backend once from BookingSettings: PostgreSQL
when a database URL is configured, in-memory storage otherwise. Booking
links, rules and calendar connections come from the YAML file when one is
configured, else from the database.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import asyncpg
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter

from .calendar_gateway import CalendarSourceGateway
from .config import BookingSettings, SideEffectDispatchMode
from .repositories import (
    BookingRepository,
    CalendarProviderAdapter,
    NotificationSender,
    ReminderScheduler,
    ReservationStore,
    SideEffectDispatcher,
)
from .repos.google.calendar import (
    GoogleCalendarProviderAdapter,
    token_file_service_factory,
)
from .repos.local.booking_config import LocalBookingConfigRepository
from .repos.local.dispatcher import InProcessSideEffectDispatcher
from .repos.memory import (
    MemoryBookingRepository,
    MemoryNotificationSender,
    MemoryReminderScheduler,
    MemoryReservationStore,
)
from .repos.mock.calendar import MockCalendarProviderAdapter
from .repos.postgresql import (
    PostgreSQLBookingConfigRepository,
    PostgreSQLBookingRepository,
    PostgreSQLNotificationOutbox,
    PostgreSQLReminderOutbox,
    PostgreSQLReservationStore,
    ensure_schema,
)
from .side_effects import BookingSideEffectsUseCase
from .usecase import (
    CancelBookingUseCase,
    CreateBookingUseCase,
    ListAvailableSlotsUseCase,
    RetryCalendarSyncUseCase,
)

logger = logging.getLogger(__name__)

ConfigRepository = Union[
    LocalBookingConfigRepository, PostgreSQLBookingConfigRepository
]


class DependencyContainer:
    """
    Dependency container with singleton lifecycle management.
    Tests replace backends by seeding ``_instances`` before first use.
    """

    def __init__(self, settings: Optional[BookingSettings] = None) -> None:
        self.settings = settings or BookingSettings.from_env()
        self._instances: Dict[str, Any] = {}

    async def get_or_create(
        self, key: str, factory: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Get or create a singleton instance."""
        if key not in self._instances:
            self._instances[key] = await factory()
        return self._instances[key]

    async def get_pool(self) -> Optional[asyncpg.Pool]:
        if not self.settings.database_url:
            return None
        return await self.get_or_create("pool", self._create_pool)  # type: ignore[no-any-return]

    async def _create_pool(self) -> asyncpg.Pool:
        logger.debug("Creating asyncpg pool")
        pool = await asyncpg.create_pool(self.settings.database_url)
        await ensure_schema(pool)
        return pool

    async def get_temporal_client(self) -> Client:
        return await self.get_or_create(  # type: ignore[no-any-return]
            "temporal_client", self._create_temporal_client
        )

    async def _create_temporal_client(self) -> Client:
        logger.debug(
            "Creating Temporal client",
            extra={"endpoint": self.settings.temporal_address},
        )
        return await Client.connect(
            self.settings.temporal_address,
            namespace="default",
            data_converter=pydantic_data_converter,
        )

    async def get_config_repository(self) -> ConfigRepository:
        async def create() -> ConfigRepository:
            if self.settings.config_path:
                return LocalBookingConfigRepository(self.settings.config_path)
            pool = await self.get_pool()
            if pool is None:
                return LocalBookingConfigRepository()
            return PostgreSQLBookingConfigRepository(pool)

        return await self.get_or_create("config_repo", create)  # type: ignore[no-any-return]

    async def _get_memory_booking_repository(
        self,
    ) -> MemoryBookingRepository:
        async def create() -> MemoryBookingRepository:
            return MemoryBookingRepository()

        return await self.get_or_create(  # type: ignore[no-any-return]
            "memory_booking_repo", create
        )

    async def get_booking_repository(self) -> BookingRepository:
        async def create() -> BookingRepository:
            pool = await self.get_pool()
            if pool is None:
                return await self._get_memory_booking_repository()
            return PostgreSQLBookingRepository(pool)

        return await self.get_or_create("booking_repo", create)  # type: ignore[no-any-return]

    async def get_reservation_store(self) -> ReservationStore:
        async def create() -> ReservationStore:
            pool = await self.get_pool()
            if pool is None:
                return MemoryReservationStore(
                    await self._get_memory_booking_repository()
                )
            return PostgreSQLReservationStore(
                pool, transaction_timeout=self.settings.transaction_timeout
            )

        return await self.get_or_create("reservation_store", create)  # type: ignore[no-any-return]

    def calendar_adapters(self) -> Dict[str, CalendarProviderAdapter]:
        adapters: Dict[str, CalendarProviderAdapter] = {
            "mock": MockCalendarProviderAdapter()
        }
        if self.settings.google_token_dir:
            adapters["google"] = GoogleCalendarProviderAdapter(
                token_file_service_factory(self.settings.google_token_dir)
            )
        return adapters

    async def get_calendar_source(self) -> CalendarSourceGateway:
        async def create() -> CalendarSourceGateway:
            return CalendarSourceGateway(
                await self.get_config_repository(), self.calendar_adapters()
            )

        return await self.get_or_create("calendar_source", create)  # type: ignore[no-any-return]

    async def get_reminder_scheduler(self) -> ReminderScheduler:
        async def create() -> ReminderScheduler:
            pool = await self.get_pool()
            if pool is None:
                return MemoryReminderScheduler()
            return PostgreSQLReminderOutbox(pool)

        return await self.get_or_create("reminder_scheduler", create)  # type: ignore[no-any-return]

    async def get_notification_sender(self) -> NotificationSender:
        async def create() -> NotificationSender:
            pool = await self.get_pool()
            if pool is None:
                return MemoryNotificationSender()
            return PostgreSQLNotificationOutbox(pool)

        return await self.get_or_create("notification_sender", create)  # type: ignore[no-any-return]

    async def get_side_effects(self) -> BookingSideEffectsUseCase:
        async def create() -> BookingSideEffectsUseCase:
            return BookingSideEffectsUseCase(
                calendar_source=await self.get_calendar_source(),
                booking_repo=await self.get_booking_repository(),
                reminder_scheduler=await self.get_reminder_scheduler(),
                notification_sender=await self.get_notification_sender(),
                reminder_lead=self.settings.reminder_lead,
                step_timeout=self.settings.side_effect_timeout,
            )

        return await self.get_or_create("side_effects", create)  # type: ignore[no-any-return]

    async def get_side_effect_dispatcher(self) -> SideEffectDispatcher:
        async def create() -> SideEffectDispatcher:
            mode = self.settings.side_effect_dispatch
            if mode is SideEffectDispatchMode.TEMPORAL:
                from .repos.temporal.dispatcher import (
                    TemporalSideEffectDispatcher,
                )

                return TemporalSideEffectDispatcher(
                    await self.get_temporal_client(),
                    self.settings.task_queue,
                    reminder_lead=self.settings.reminder_lead,
                )
            return InProcessSideEffectDispatcher(
                await self.get_side_effects()
            )

        return await self.get_or_create("dispatcher", create)  # type: ignore[no-any-return]

    async def create_booking_use_case(self) -> CreateBookingUseCase:
        config = await self.get_config_repository()
        return CreateBookingUseCase(
            link_repo=config,
            rule_repo=config,
            booking_repo=await self.get_booking_repository(),
            reservation_store=await self.get_reservation_store(),
            calendar_source=await self.get_calendar_source(),
            side_effect_dispatcher=await self.get_side_effect_dispatcher(),
            lock_timeout=self.settings.lock_timeout,
            duration_tolerance=self.settings.duration_tolerance,
        )

    async def cancel_booking_use_case(self) -> CancelBookingUseCase:
        return CancelBookingUseCase(
            link_repo=await self.get_config_repository(),
            booking_repo=await self.get_booking_repository(),
            reservation_store=await self.get_reservation_store(),
            side_effects=await self.get_side_effects(),
            lock_timeout=self.settings.lock_timeout,
        )

    async def retry_calendar_sync_use_case(self) -> RetryCalendarSyncUseCase:
        return RetryCalendarSyncUseCase(
            link_repo=await self.get_config_repository(),
            booking_repo=await self.get_booking_repository(),
            side_effects=await self.get_side_effects(),
        )

    async def list_available_slots_use_case(
        self,
    ) -> ListAvailableSlotsUseCase:
        config = await self.get_config_repository()
        return ListAvailableSlotsUseCase(
            link_repo=config,
            rule_repo=config,
            booking_repo=await self.get_booking_repository(),
            calendar_source=await self.get_calendar_source(),
            slot_increment=self.settings.slot_increment,
        )

    async def close(self) -> None:
        """Finish in-process side effects and release connections."""
        dispatcher = self._instances.get("dispatcher")
        if isinstance(dispatcher, InProcessSideEffectDispatcher):
            await dispatcher.drain()
        pool = self._instances.pop("pool", None)
        if pool is not None:
            await pool.close()
        self._instances.clear()
