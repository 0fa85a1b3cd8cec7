"""
In-memory reminder and notification outboxes.

Requests are recorded once per dedupe key, the same way the PostgreSQL
outbox tables deduplicate retried writes.
"""

import logging
from typing import Dict, List

from booking.domain import NotificationRequest, ReminderRequest
from booking.repositories import NotificationSender, ReminderScheduler

logger = logging.getLogger(__name__)


class MemoryReminderScheduler(ReminderScheduler):
    def __init__(self) -> None:
        self.reminders: Dict[str, ReminderRequest] = {}

    async def schedule_reminder(self, request: ReminderRequest) -> None:
        if request.dedupe_key in self.reminders:
            logger.debug(
                "Reminder already scheduled",
                extra={"dedupe_key": request.dedupe_key},
            )
            return
        self.reminders[request.dedupe_key] = request
        logger.info(
            "Reminder scheduled",
            extra={
                "recipient": request.recipient,
                "send_at": request.send_at.isoformat(),
                "dedupe_key": request.dedupe_key,
            },
        )

    @property
    def scheduled(self) -> List[ReminderRequest]:
        return list(self.reminders.values())


class MemoryNotificationSender(NotificationSender):
    def __init__(self) -> None:
        self.notifications: Dict[str, NotificationRequest] = {}

    async def notify(self, request: NotificationRequest) -> None:
        if request.dedupe_key in self.notifications:
            logger.debug(
                "Notification already sent",
                extra={"dedupe_key": request.dedupe_key},
            )
            return
        self.notifications[request.dedupe_key] = request
        logger.info(
            "Notification sent",
            extra={
                "recipient": request.recipient,
                "template": request.template.value,
                "dedupe_key": request.dedupe_key,
            },
        )

    @property
    def sent(self) -> List[NotificationRequest]:
        return list(self.notifications.values())
