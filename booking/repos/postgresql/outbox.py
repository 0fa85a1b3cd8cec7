"""
PostgreSQL reminder and notification outboxes.

Scheduling a reminder or sending a notification means writing a row that
an external delivery worker drains. Rows are keyed by dedupe key, so a
retried activity is a no-op.
"""

import json
import logging

from asyncpg import Pool

from booking.domain import NotificationRequest, ReminderRequest
from booking.repositories import NotificationSender, ReminderScheduler

logger = logging.getLogger(__name__)


def _inserted(status: str) -> bool:
    return status.split()[-1] != "0"


class PostgreSQLReminderOutbox(ReminderScheduler):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def schedule_reminder(self, request: ReminderRequest) -> None:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                INSERT INTO reminder_outbox (
                    dedupe_key, recipient, send_at, payload
                ) VALUES ($1, $2, $3, $4)
                ON CONFLICT (dedupe_key) DO NOTHING
                """,
                request.dedupe_key,
                request.recipient,
                request.send_at,
                json.dumps(request.payload),
            )
        logger.info(
            "Reminder queued" if _inserted(status) else "Reminder already queued",
            extra={
                "dedupe_key": request.dedupe_key,
                "send_at": request.send_at.isoformat(),
            },
        )


class PostgreSQLNotificationOutbox(NotificationSender):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def notify(self, request: NotificationRequest) -> None:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                INSERT INTO notification_outbox (
                    dedupe_key, recipient, template, data
                ) VALUES ($1, $2, $3, $4)
                ON CONFLICT (dedupe_key) DO NOTHING
                """,
                request.dedupe_key,
                request.recipient,
                request.template.value,
                json.dumps(request.data),
            )
        logger.info(
            "Notification queued"
            if _inserted(status)
            else "Notification already queued",
            extra={
                "dedupe_key": request.dedupe_key,
                "template": request.template.value,
            },
        )
