"""
Google Calendar implementation of the CalendarProviderAdapter protocol.

Busy intervals come from the free/busy API. Events are inserted with an
event id derived from the booking's idempotency key, so a retried insert is
answered with 409 Conflict and the existing event is returned instead of a
duplicate being created.
"""

import asyncio
import base64
import hashlib
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError

from booking.domain import (
    BusyInterval,
    BusySource,
    CalendarConnection,
    CalendarEventRequest,
    ExternalEventRef,
    TimeWindow,
)
from booking.exceptions import CalendarProviderError
from booking.repositories import CalendarProviderAdapter

logger = logging.getLogger(__name__)

PROVIDER = "google"
SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.freebusy",
]

ServiceFactory = Callable[[CalendarConnection], Resource]


def token_file_service_factory(token_dir: str) -> ServiceFactory:
    """
    Build Calendar services from already-authorized token files.

    Each owner's token lives at ``<token_dir>/<owner_id>.json``, written by
    whatever performed the OAuth exchange. Expired access tokens are
    refreshed with the stored refresh token.
    """
    base = Path(token_dir).expanduser()

    def factory(connection: CalendarConnection) -> Resource:
        token_path = base / f"{connection.owner_id}.json"
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
        if not creds.valid and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        return build(
            "calendar", "v3", credentials=creds, cache_discovery=False
        )

    return factory


def google_event_id(idempotency_key: str) -> str:
    """
    Deterministic Google event id for an idempotency key.

    Google event ids allow base32hex characters (a-v, 0-9), 5 to 1024 long.
    """
    digest = hashlib.sha256(idempotency_key.encode("utf-8")).digest()
    return base64.b32hexencode(digest).decode("ascii").rstrip("=").lower()


def _parse_google_datetime(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class GoogleCalendarProviderAdapter(CalendarProviderAdapter):
    """Reads free/busy and writes events through the Google Calendar API."""

    def __init__(self, service_factory: ServiceFactory):
        self._service_factory = service_factory
        self._services: Dict[str, Resource] = {}

    async def _service(self, connection: CalendarConnection) -> Resource:
        """Cached service for a connection; loading credentials and
        building the client block, so they run in a thread."""
        service = self._services.get(connection.connection_id)
        if service is None:
            service = await asyncio.to_thread(
                self._service_factory, connection
            )
            self._services[connection.connection_id] = service
        return service

    async def _execute_request(self, request: Any) -> Any:
        """Run a blocking google-api-python-client request in a thread."""
        return await asyncio.to_thread(request.execute)

    async def list_busy_intervals(
        self, connection: CalendarConnection, window: TimeWindow
    ) -> List[BusyInterval]:
        body = {
            "timeMin": window.start.isoformat(),
            "timeMax": window.end.isoformat(),
            "items": [{"id": connection.calendar_id}],
        }
        service = await self._service(connection)
        try:
            response = await self._execute_request(
                service.freebusy().query(body=body)
            )
        except HttpError as e:
            raise CalendarProviderError(
                PROVIDER, "freebusy.query", str(e)
            ) from e

        calendar = response.get("calendars", {}).get(
            connection.calendar_id, {}
        )
        if calendar.get("errors"):
            raise CalendarProviderError(
                PROVIDER, "freebusy.query", str(calendar["errors"])
            )

        intervals = []
        for busy in calendar.get("busy", []):
            start = _parse_google_datetime(busy["start"])
            end = _parse_google_datetime(busy["end"])
            if end <= start:
                continue
            intervals.append(
                BusyInterval(
                    owner_id=connection.owner_id,
                    window=TimeWindow(start=start, end=end),
                    source=BusySource.EXTERNAL,
                    provider=PROVIDER,
                )
            )
        logger.debug(
            "Fetched Google busy intervals",
            extra={
                "connection_id": connection.connection_id,
                "interval_count": len(intervals),
            },
        )
        return intervals

    async def create_event(
        self, connection: CalendarConnection, request: CalendarEventRequest
    ) -> ExternalEventRef:
        event_id = google_event_id(request.idempotency_key)
        body = {
            "id": event_id,
            "summary": request.title,
            "description": request.description or "",
            "start": {
                "dateTime": request.window.start.isoformat(),
                "timeZone": "UTC",
            },
            "end": {
                "dateTime": request.window.end.isoformat(),
                "timeZone": "UTC",
            },
            "attendees": [{"email": email} for email in request.attendees],
            "extendedProperties": {
                "private": {"idempotencyKey": request.idempotency_key}
            },
        }
        events = (await self._service(connection)).events()
        try:
            created = await self._execute_request(
                events.insert(
                    calendarId=connection.calendar_id,
                    body=body,
                    sendUpdates="all",
                )
            )
        except HttpError as e:
            if e.resp.status != 409:
                raise CalendarProviderError(
                    PROVIDER, "events.insert", str(e)
                ) from e
            logger.info(
                "Google event already exists for idempotency key",
                extra={
                    "connection_id": connection.connection_id,
                    "event_id": event_id,
                    "idempotency_key": request.idempotency_key,
                },
            )
            try:
                created = await self._execute_request(
                    events.get(
                        calendarId=connection.calendar_id, eventId=event_id
                    )
                )
            except HttpError as get_error:
                raise CalendarProviderError(
                    PROVIDER, "events.get", str(get_error)
                ) from get_error

        return ExternalEventRef(
            provider=PROVIDER,
            calendar_id=connection.calendar_id,
            event_id=created["id"],
            html_link=created.get("htmlLink"),
        )
