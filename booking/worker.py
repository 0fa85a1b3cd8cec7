"""
Temporal worker that runs the booking side-effect workflow and activities.
"""

import asyncio
import logging
from typing import Optional

from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.service import RPCError
from temporalio.worker import Worker

from .config import BookingSettings
from .dependencies import DependencyContainer
from .repos.temporal.activities import (
    TemporalCalendarSourceGateway,
    TemporalPostgreSQLBookingRepository,
    TemporalPostgreSQLNotificationOutbox,
    TemporalPostgreSQLReminderOutbox,
    activities_for,
)
from .workflows import BookingSideEffectsWorkflow

logger = logging.getLogger(__name__)


def setup_logging(settings: Optional[BookingSettings] = None) -> None:
    """Configure logging from LOG_LEVEL and LOG_FORMAT"""
    settings = settings or BookingSettings.from_env()
    log_level = settings.log_level.upper()

    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        print(f"Invalid log level: {log_level}, defaulting to INFO")
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=settings.log_format,
        force=True,  # Override any existing configuration
    )

    logger.info(
        "Logging configured",
        extra={"log_level": log_level, "numeric_level": numeric_level},
    )


async def get_temporal_client_with_retries(
    endpoint: str, attempts: int = 10, delay: int = 5
) -> Client:
    """Attempt to connect to Temporal with retries."""
    for attempt in range(attempts):
        try:
            client = await Client.connect(
                endpoint,
                data_converter=pydantic_data_converter,
                namespace="default",
            )
            logger.info(
                "Successfully connected to Temporal",
                extra={"endpoint": endpoint, "attempt": attempt + 1},
            )
            return client
        except RPCError as e:
            logger.warning(
                "Failed to connect to Temporal",
                extra={
                    "endpoint": endpoint,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "error": str(e),
                    "retry_in_seconds": delay,
                },
            )
            if attempt + 1 == attempts:
                logger.error(
                    "All connection attempts to Temporal failed",
                    extra={"endpoint": endpoint, "total_attempts": attempts},
                )
                raise
            await asyncio.sleep(delay)

    raise RuntimeError("Failed to connect to Temporal after all attempts")


async def run_worker(settings: Optional[BookingSettings] = None) -> None:
    """
    Run the Temporal worker for booking side effects.

    Activities write to PostgreSQL, so DATABASE_URL is required.
    """
    settings = settings or BookingSettings.from_env()
    setup_logging(settings)

    if not settings.database_url:
        raise RuntimeError("DATABASE_URL must be set to run the worker")

    logger.info(
        "Starting booking worker",
        extra={
            "temporal_address": settings.temporal_address,
            "task_queue": settings.task_queue,
        },
    )

    client = await get_temporal_client_with_retries(settings.temporal_address)
    container = DependencyContainer(settings)
    pool = await container.get_pool()
    config_repo = await container.get_config_repository()
    adapters = container.calendar_adapters()

    calendar_source = TemporalCalendarSourceGateway(config_repo, adapters)
    booking_repo = TemporalPostgreSQLBookingRepository(pool)
    reminder_outbox = TemporalPostgreSQLReminderOutbox(pool)
    notification_outbox = TemporalPostgreSQLNotificationOutbox(pool)

    activities = [
        *activities_for(calendar_source),
        *activities_for(booking_repo),
        *activities_for(reminder_outbox),
        *activities_for(notification_outbox),
    ]

    logger.info(
        "Creating Temporal worker",
        extra={
            "task_queue": settings.task_queue,
            "activity_count": len(activities),
            "calendar_providers": sorted(adapters),
        },
    )

    worker = Worker(
        client,
        task_queue=settings.task_queue,
        workflows=[BookingSideEffectsWorkflow],
        activities=activities,
    )

    try:
        await worker.run()
    finally:
        await container.close()


def main() -> None:
    """Main entry point for the worker"""
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
