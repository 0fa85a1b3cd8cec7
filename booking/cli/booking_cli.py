"""
Command line interface to the booking engine.

Configuration comes from the environment (see booking.config). Without
DATABASE_URL bookings live in memory for the duration of one command, which
is enough to try a configuration out; with it, commands operate on the
shared database.
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from booking.config import BookingSettings
from booking.dependencies import DependencyContainer
from booking.domain import RequesterInfo, TimeWindow
from booking.exceptions import BookingEngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IsoDateTime(click.ParamType):
    """ISO 8601 timestamp; naive values are read as UTC."""

    name = "iso-datetime"

    def convert(
        self,
        value: Any,
        param: Optional[click.Parameter],
        ctx: Optional[click.Context],
    ) -> datetime:
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value))
            except ValueError:
                self.fail(f"{value!r} is not an ISO 8601 timestamp", param, ctx)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


ISO_DATETIME = IsoDateTime()


def _run(
    settings: BookingSettings,
    action: Callable[[DependencyContainer], Awaitable[T]],
) -> T:
    async def run() -> T:
        container = DependencyContainer(settings)
        try:
            return await action(container)
        finally:
            await container.close()

    return asyncio.run(run())


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="YAML file with booking links, rules and calendar connections",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """Query availability and manage bookings."""
    settings = BookingSettings.from_env()
    if config_path:
        settings = settings.model_copy(update={"config_path": config_path})
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=settings.log_format,
    )
    # Suppress noisy Google API cache warnings
    logging.getLogger("googleapiclient.discovery_cache").setLevel(
        logging.ERROR
    )
    ctx.obj = settings


@cli.command()
@click.argument("link_id")
@click.option("--start", required=True, type=ISO_DATETIME)
@click.option("--end", required=True, type=ISO_DATETIME)
@click.pass_obj
def slots(
    settings: BookingSettings, link_id: str, start: datetime, end: datetime
) -> None:
    """List bookable slots of LINK_ID between START and END."""

    async def action(container: DependencyContainer) -> Any:
        use_case = await container.list_available_slots_use_case()
        return await use_case.list_available_slots(link_id, start, end)

    try:
        available = _run(settings, action)
    except BookingEngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not available:
        click.echo("No available slots")
        return
    for slot in available:
        click.echo(
            f"{slot.window.start.isoformat()}  {slot.window.end.isoformat()}"
            f"  {', '.join(slot.candidate_ids)}"
        )


@cli.command()
@click.argument("link_id")
@click.option("--start", required=True, type=ISO_DATETIME)
@click.option("--end", required=True, type=ISO_DATETIME)
@click.option("--name", required=True, help="Requester name")
@click.option("--email", required=True, help="Requester email")
@click.option("--notes", default=None)
@click.option("--timezone", "requester_timezone", default=None)
@click.pass_obj
def book(
    settings: BookingSettings,
    link_id: str,
    start: datetime,
    end: datetime,
    name: str,
    email: str,
    notes: Optional[str],
    requester_timezone: Optional[str],
) -> None:
    """Book START-END on LINK_ID."""
    try:
        window = TimeWindow(start=start, end=end)
        requester = RequesterInfo(
            name=name,
            email=email,
            notes=notes,
            timezone=requester_timezone,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def action(container: DependencyContainer) -> Any:
        use_case = await container.create_booking_use_case()
        return await use_case.create_booking(link_id, window, requester)

    outcome = _run(settings, action)
    if outcome.booking is None:
        click.echo(
            f"Rejected: {outcome.rejection.value}"
            + (f" ({outcome.detail})" if outcome.detail else ""),
            err=True,
        )
        sys.exit(1)
    click.echo(outcome.booking.model_dump_json(indent=2))


@cli.command()
@click.argument("booking_id")
@click.option("--reason", default=None, help="Cancellation reason")
@click.pass_obj
def cancel(
    settings: BookingSettings, booking_id: str, reason: Optional[str]
) -> None:
    """Cancel BOOKING_ID."""

    async def action(container: DependencyContainer) -> Any:
        use_case = await container.cancel_booking_use_case()
        return await use_case.cancel_booking(booking_id, reason)

    try:
        cancelled = _run(settings, action)
    except (BookingEngineError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Cancelled {cancelled.booking_id}")


@cli.command("retry-sync")
@click.argument("booking_id", required=False)
@click.option("--limit", default=50, show_default=True)
@click.pass_obj
def retry_sync(
    settings: BookingSettings, booking_id: Optional[str], limit: int
) -> None:
    """Retry calendar sync for BOOKING_ID, or for every flagged booking."""

    async def action(container: DependencyContainer) -> Any:
        use_case = await container.retry_calendar_sync_use_case()
        if booking_id:
            return {booking_id: await use_case.retry(booking_id)}
        return await use_case.retry_failed(limit)

    try:
        results = _run(settings, action)
    except BookingEngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not results:
        click.echo("No bookings need calendar sync")
    for synced_id, outcome in results.items():
        click.echo(f"{synced_id}: {outcome.value}")


if __name__ == "__main__":
    cli()
