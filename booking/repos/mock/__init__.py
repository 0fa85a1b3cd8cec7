"""Mock calendar provider for tests and local runs."""

from .calendar import MockCalendarProviderAdapter

__all__ = ["MockCalendarProviderAdapter"]
