"""
Local YAML-based implementation of the booking configuration repositories.

Expected layout::

    links:
      - link_id: intro-call
        owner_id: alice
        duration_minutes: 30
    availability_rules:
      - user_id: alice
        timezone: America/New_York
        working_days: [mon, tue, wed, thu, fri]
        working_hours: {start: "09:00", end: "17:00"}
    calendar_connections:
      - connection_id: alice-google
        owner_id: alice
        provider: google
        is_primary: true
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from booking.domain import AvailabilityRule, BookingLink, CalendarConnection
from booking.repositories import (
    AvailabilityRuleRepository,
    BookingLinkRepository,
    CalendarConnectionRepository,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class LocalBookingConfigRepository(
    BookingLinkRepository,
    AvailabilityRuleRepository,
    CalendarConnectionRepository,
):
    """
    Loads links, availability rules and calendar connections from a YAML
    file. The file is re-read on every call so edits apply without a
    restart; malformed entries are logged and skipped.
    """

    def __init__(self, config_path: str = "~/.config/booking/config.yaml"):
        """
        Initialize with path to configuration file.

        Args:
            config_path: Path to YAML configuration file, supports ~
                expansion
        """
        self.config_path = Path(config_path).expanduser()
        logger.debug(
            f"Initialized LocalBookingConfigRepository with path: "
            f"{self.config_path}"
        )

    def _load(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.warning(
                f"Configuration file not found: {self.config_path}"
            )
            return {}

        with open(self.config_path, "r") as f:
            config_data = yaml.safe_load(f)

        if not isinstance(config_data, dict):
            logger.error(
                f"Configuration file must contain a YAML dictionary: "
                f"{self.config_path}"
            )
            return {}
        return config_data

    def _section(self, key: str, model: Type[M]) -> List[M]:
        entries = self._load().get(key) or []
        if not isinstance(entries, list):
            logger.error(
                f"'{key}' must be a list in configuration file: "
                f"{self.config_path}"
            )
            return []

        items = []
        for entry in entries:
            try:
                items.append(model.model_validate(entry))
            except ValidationError as e:
                logger.error(
                    f"Skipping invalid {model.__name__} entry in "
                    f"{self.config_path}: {e}"
                )
        return items

    async def get_booking_link(self, link_id: str) -> Optional[BookingLink]:
        for link in self._section("links", BookingLink):
            if link.link_id == link_id:
                return link
        logger.debug(f"Booking link not found: {link_id}")
        return None

    async def get_availability_rule(
        self, user_id: str
    ) -> Optional[AvailabilityRule]:
        for rule in self._section("availability_rules", AvailabilityRule):
            if rule.user_id == user_id:
                return rule
        return None

    async def list_calendar_connections(
        self, owner_id: str
    ) -> List[CalendarConnection]:
        return [
            connection
            for connection in self._section(
                "calendar_connections", CalendarConnection
            )
            if connection.owner_id == owner_id
        ]
