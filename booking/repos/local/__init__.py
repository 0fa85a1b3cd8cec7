"""Local (file and in-process) implementations of booking repositories."""

from .booking_config import LocalBookingConfigRepository
from .dispatcher import InProcessSideEffectDispatcher

__all__ = [
    "LocalBookingConfigRepository",
    "InProcessSideEffectDispatcher",
]
