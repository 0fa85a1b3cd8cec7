"""
Tests for worker startup helpers.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from temporalio.service import RPCError, RPCStatusCode

from booking.config import BookingSettings
from booking.worker import (
    get_temporal_client_with_retries,
    run_worker,
    setup_logging,
)


def test_setup_logging_applies_level() -> None:
    setup_logging(BookingSettings.from_env({"LOG_LEVEL": "debug"}))
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_falls_back_to_info() -> None:
    setup_logging(BookingSettings.from_env({"LOG_LEVEL": "chatty"}))
    assert logging.getLogger().level == logging.INFO


@pytest.mark.asyncio
async def test_worker_requires_database() -> None:
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        await run_worker(BookingSettings.from_env({}))


@pytest.mark.asyncio
async def test_client_connection_is_retried() -> None:
    client = object()
    error = RPCError("unavailable", RPCStatusCode.UNAVAILABLE, b"")
    with patch(
        "booking.worker.Client.connect",
        new_callable=AsyncMock,
        side_effect=[error, client],
    ) as mock_connect:
        result = await get_temporal_client_with_retries(
            "localhost:7233", attempts=3, delay=0
        )

    assert result is client
    assert mock_connect.await_count == 2


@pytest.mark.asyncio
async def test_client_connection_gives_up() -> None:
    error = RPCError("unavailable", RPCStatusCode.UNAVAILABLE, b"")
    with patch(
        "booking.worker.Client.connect",
        new_callable=AsyncMock,
        side_effect=error,
    ):
        with pytest.raises(RPCError):
            await get_temporal_client_with_retries(
                "localhost:7233", attempts=2, delay=0
            )
