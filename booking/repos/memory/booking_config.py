"""
In-memory booking configuration: links, availability rules and calendar
connections kept in dictionaries.
"""

import logging
from typing import Dict, List, Optional

from booking.domain import AvailabilityRule, BookingLink, CalendarConnection
from booking.repositories import (
    AvailabilityRuleRepository,
    BookingLinkRepository,
    CalendarConnectionRepository,
)

logger = logging.getLogger(__name__)


class MemoryBookingConfigRepository(
    BookingLinkRepository,
    AvailabilityRuleRepository,
    CalendarConnectionRepository,
):
    """Configuration repository backed by dictionaries."""

    def __init__(
        self,
        links: Optional[List[BookingLink]] = None,
        rules: Optional[List[AvailabilityRule]] = None,
        connections: Optional[List[CalendarConnection]] = None,
    ) -> None:
        self.links: Dict[str, BookingLink] = {}
        self.rules: Dict[str, AvailabilityRule] = {}
        self.connections: Dict[str, CalendarConnection] = {}
        for link in links or []:
            self.add_link(link)
        for rule in rules or []:
            self.add_rule(rule)
        for connection in connections or []:
            self.add_connection(connection)

    def add_link(self, link: BookingLink) -> None:
        self.links[link.link_id] = link

    def add_rule(self, rule: AvailabilityRule) -> None:
        self.rules[rule.user_id] = rule

    def add_connection(self, connection: CalendarConnection) -> None:
        self.connections[connection.connection_id] = connection

    async def get_booking_link(self, link_id: str) -> Optional[BookingLink]:
        return self.links.get(link_id)

    async def get_availability_rule(
        self, user_id: str
    ) -> Optional[AvailabilityRule]:
        return self.rules.get(user_id)

    async def list_calendar_connections(
        self, owner_id: str
    ) -> List[CalendarConnection]:
        return [
            connection
            for connection in self.connections.values()
            if connection.owner_id == owner_id
        ]
