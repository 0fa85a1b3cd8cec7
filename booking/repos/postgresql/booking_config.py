"""
PostgreSQL implementation of the booking configuration repositories.

Links, rules and connections are owned by the surrounding product (the
engine only reads them); the ``save_*`` methods exist for provisioning and
for importing a local YAML configuration.
"""

import logging
from typing import List, Optional

from asyncpg import Pool

from booking.domain import AvailabilityRule, BookingLink, CalendarConnection
from booking.repositories import (
    AvailabilityRuleRepository,
    BookingLinkRepository,
    CalendarConnectionRepository,
)

logger = logging.getLogger(__name__)


class PostgreSQLBookingConfigRepository(
    BookingLinkRepository,
    AvailabilityRuleRepository,
    CalendarConnectionRepository,
):
    def __init__(self, pool: Pool):
        self.pool = pool
        logger.debug("Initialized PostgreSQLBookingConfigRepository")

    async def get_booking_link(self, link_id: str) -> Optional[BookingLink]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT link_data FROM booking_links WHERE link_id = $1",
                link_id,
            )
        if row is None:
            return None
        return BookingLink.model_validate_json(row["link_data"])

    async def get_availability_rule(
        self, user_id: str
    ) -> Optional[AvailabilityRule]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT rule_data FROM availability_rules WHERE user_id = $1",
                user_id,
            )
        if row is None:
            return None
        return AvailabilityRule.model_validate_json(row["rule_data"])

    async def list_calendar_connections(
        self, owner_id: str
    ) -> List[CalendarConnection]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT connection_data
                FROM calendar_connections
                WHERE owner_id = $1
                ORDER BY connection_id
                """,
                owner_id,
            )
        return [
            CalendarConnection.model_validate_json(row["connection_data"])
            for row in rows
        ]

    async def save_booking_link(self, link: BookingLink) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO booking_links (link_id, owner_id, link_data)
                VALUES ($1, $2, $3)
                ON CONFLICT (link_id)
                DO UPDATE SET
                    owner_id = EXCLUDED.owner_id,
                    link_data = EXCLUDED.link_data,
                    updated_at = now()
                """,
                link.link_id,
                link.owner_id,
                link.model_dump_json(),
            )
        logger.info("Saved booking link", extra={"link_id": link.link_id})

    async def save_availability_rule(self, rule: AvailabilityRule) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO availability_rules (user_id, rule_data)
                VALUES ($1, $2)
                ON CONFLICT (user_id)
                DO UPDATE SET
                    rule_data = EXCLUDED.rule_data,
                    updated_at = now()
                """,
                rule.user_id,
                rule.model_dump_json(),
            )
        logger.info("Saved availability rule", extra={"user_id": rule.user_id})

    async def save_calendar_connection(
        self, connection: CalendarConnection
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO calendar_connections (
                    connection_id, owner_id, connection_data
                ) VALUES ($1, $2, $3)
                ON CONFLICT (connection_id)
                DO UPDATE SET
                    owner_id = EXCLUDED.owner_id,
                    connection_data = EXCLUDED.connection_data,
                    updated_at = now()
                """,
                connection.connection_id,
                connection.owner_id,
                connection.model_dump_json(),
            )
        logger.info(
            "Saved calendar connection",
            extra={"connection_id": connection.connection_id},
        )
