"""
Runtime configuration for the booking engine.

Settings are read from environment variables, following the worker's
``os.environ.get(...)`` convention, and validated by a Pydantic model so a
bad value fails at startup rather than in the middle of a booking.
"""

from datetime import timedelta
from enum import Enum
from typing import Mapping, Optional
import os

from pydantic import BaseModel, Field


class SideEffectDispatchMode(str, Enum):
    TEMPORAL = "temporal"
    INPROCESS = "inprocess"


class BookingSettings(BaseModel):
    """Tunables and connection settings shared by the CLI and the worker."""

    database_url: Optional[str] = Field(
        None, description="asyncpg DSN; in-memory storage is used if unset"
    )
    temporal_address: str = "localhost:7233"
    task_queue: str = "booking-task-queue"

    lock_timeout_seconds: float = Field(
        5.0, gt=0, description="Max wait for the reservation locks"
    )
    transaction_timeout_seconds: float = Field(
        10.0, gt=0, description="Max duration of the critical section"
    )
    duration_tolerance_seconds: int = Field(
        60, ge=0, description="Allowed difference from the link duration"
    )
    reminder_lead_minutes: int = Field(
        15, ge=0, description="Reminders are sent this long before start"
    )
    side_effect_timeout_seconds: float = Field(
        30.0, gt=0, description="Timeout of each post-commit step"
    )
    side_effect_dispatch: SideEffectDispatchMode = (
        SideEffectDispatchMode.INPROCESS
    )
    slot_increment_minutes: int = Field(30, gt=0)

    config_path: Optional[str] = Field(
        None, description="YAML file with links, rules and connections"
    )
    google_token_dir: Optional[str] = Field(
        None, description="Directory of authorized Google token files"
    )

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def lock_timeout(self) -> timedelta:
        return timedelta(seconds=self.lock_timeout_seconds)

    @property
    def transaction_timeout(self) -> timedelta:
        return timedelta(seconds=self.transaction_timeout_seconds)

    @property
    def duration_tolerance(self) -> timedelta:
        return timedelta(seconds=self.duration_tolerance_seconds)

    @property
    def reminder_lead(self) -> timedelta:
        return timedelta(minutes=self.reminder_lead_minutes)

    @property
    def side_effect_timeout(self) -> timedelta:
        return timedelta(seconds=self.side_effect_timeout_seconds)

    @property
    def slot_increment(self) -> timedelta:
        return timedelta(minutes=self.slot_increment_minutes)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "BookingSettings":
        """Build settings from environment variables; unset ones keep their
        defaults."""
        env = os.environ if environ is None else environ
        names = {
            "database_url": "DATABASE_URL",
            "temporal_address": "TEMPORAL_ADDRESS",
            "task_queue": "BOOKING_TASK_QUEUE",
            "lock_timeout_seconds": "BOOKING_LOCK_TIMEOUT_SECONDS",
            "transaction_timeout_seconds": (
                "BOOKING_TRANSACTION_TIMEOUT_SECONDS"
            ),
            "duration_tolerance_seconds": (
                "BOOKING_DURATION_TOLERANCE_SECONDS"
            ),
            "reminder_lead_minutes": "BOOKING_REMINDER_LEAD_MINUTES",
            "side_effect_timeout_seconds": (
                "BOOKING_SIDE_EFFECT_TIMEOUT_SECONDS"
            ),
            "side_effect_dispatch": "BOOKING_SIDE_EFFECT_DISPATCH",
            "slot_increment_minutes": "BOOKING_SLOT_INCREMENT_MINUTES",
            "config_path": "BOOKING_CONFIG_PATH",
            "google_token_dir": "GOOGLE_TOKEN_DIR",
            "log_level": "LOG_LEVEL",
            "log_format": "LOG_FORMAT",
        }
        values = {
            field: env[var] for field, var in names.items() if var in env
        }
        return cls.model_validate(values)
