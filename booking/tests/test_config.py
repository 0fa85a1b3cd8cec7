"""
Tests for BookingSettings.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from booking.config import BookingSettings, SideEffectDispatchMode


def test_defaults_without_environment() -> None:
    settings = BookingSettings.from_env({})

    assert settings.database_url is None
    assert settings.temporal_address == "localhost:7233"
    assert settings.lock_timeout == timedelta(seconds=5)
    assert settings.duration_tolerance == timedelta(minutes=1)
    assert settings.reminder_lead == timedelta(minutes=15)
    assert settings.slot_increment == timedelta(minutes=30)
    assert settings.side_effect_dispatch is SideEffectDispatchMode.INPROCESS


def test_reads_environment_variables() -> None:
    settings = BookingSettings.from_env(
        {
            "DATABASE_URL": "postgresql://localhost/booking",
            "BOOKING_LOCK_TIMEOUT_SECONDS": "2.5",
            "BOOKING_REMINDER_LEAD_MINUTES": "60",
            "BOOKING_SIDE_EFFECT_DISPATCH": "temporal",
            "BOOKING_TASK_QUEUE": "bookings",
            "LOG_LEVEL": "DEBUG",
            "UNRELATED": "ignored",
        }
    )

    assert settings.database_url == "postgresql://localhost/booking"
    assert settings.lock_timeout == timedelta(seconds=2.5)
    assert settings.reminder_lead == timedelta(hours=1)
    assert settings.side_effect_dispatch is SideEffectDispatchMode.TEMPORAL
    assert settings.task_queue == "bookings"
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "name, value",
    [
        ("BOOKING_LOCK_TIMEOUT_SECONDS", "0"),
        ("BOOKING_LOCK_TIMEOUT_SECONDS", "soon"),
        ("BOOKING_SLOT_INCREMENT_MINUTES", "-15"),
        ("BOOKING_SIDE_EFFECT_DISPATCH", "carrier-pigeon"),
    ],
)
def test_invalid_values_fail_at_startup(name: str, value: str) -> None:
    with pytest.raises(ValidationError):
        BookingSettings.from_env({name: value})
