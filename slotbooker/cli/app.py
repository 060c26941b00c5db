"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.capability_tokens import CapabilityTokens
from ..adapters.dispatchers import ConsoleDispatcher
from ..adapters.memory_store import InMemoryDocumentStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import AuthError, SlotbookerError
from ..domain.models import WEEKDAYS, BookingStatus, default_availability
from ..domain.slot_calculator import SlotCalculator
from ..services.booking_service import BookingRequest, BookingService
from ..services.notifications import BookingNotifier
from ..services.repository import BookingRepository
from ..services.slot_service import SlotService

app = typer.Typer(
    name="slotbooker",
    help="Compute bookable slots and manage bookings against host availability",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
DataOption = Annotated[Optional[Path], typer.Option("--data", help="JSON data file backing the store (overrides config)")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output")]
HostOption = Annotated[Optional[str], typer.Option("--host", help="Act as this host id")]
TokenOption = Annotated[Optional[str], typer.Option("--token", help="Invitee capability token")]


class CliContext:
    """Everything a command needs, built from config and the data file."""

    def __init__(self, config: AppConfig, data_file: Optional[Path]):
        self.config = config
        self.data_file = data_file
        self.store = InMemoryDocumentStore.load_fixture(data_file) if data_file else InMemoryDocumentStore()
        self.repository = BookingRepository(self.store)
        self.slot_service = SlotService(
            self.repository,
            SlotCalculator(step_minutes=config.slot_step_minutes),
        )
        notifier = BookingNotifier(
            ConsoleDispatcher(console=console, sender=config.notifications.sender),
            enabled=config.notifications.enabled,
        )
        self.booking_service = BookingService(
            self.repository,
            notifier,
            max_attempts=config.booking.max_attempts,
            backoff_base_seconds=config.booking.backoff_base_seconds,
        )
        self.tokens = (
            CapabilityTokens(config.tokens.secret, config.tokens.ttl_minutes, config.tokens.algorithm)
            if config.tokens.secret else None
        )

    def save(self) -> None:
        if self.data_file:
            self.store.save_fixture(self.data_file)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose)],
        force=True,
    )


def _load_context(config_file: Optional[Path], data_file: Optional[Path], verbose: bool) -> CliContext:
    _configure_logging(verbose)
    config_path = config_file or get_default_config_path()
    if config_path.exists() or config_file is not None:
        config = AppConfig.load_from_yaml(config_path)
    else:
        config = AppConfig()
    return CliContext(config, data_file or config.data_file)


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    raise typer.Exit(1)


async def _authorize(ctx: CliContext, booking_id: str, action: str, host: Optional[str], token: Optional[str]) -> bool:
    """Host of the booking, or the holder of a matching capability token."""
    if host:
        booking = await ctx.repository.find_booking(booking_id)
        return booking is not None and booking.host_id == host
    if token and ctx.tokens:
        return ctx.tokens.is_authorized(token, booking_id, action)
    return False


@app.command()
def slots(
    template_id: Annotated[str, typer.Argument(help="Event template id")],
    date: Annotated[str, typer.Argument(help="Day to inspect (YYYY-MM-DD)")],
    tz: Annotated[Optional[str], typer.Option("--tz", help="Timezone; defaults to the template's")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    List bookable slots of an event template for one day.

    Examples:

        slotbooker slots intro-call 2024-11-25 --data bookings.json
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)
        found = asyncio.run(ctx.slot_service.find_slots(event_template_id=template_id, date=date, timezone=tz))
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not found:
        console.print("[yellow]⚠ No bookable slots on this day.[/yellow]")
        return

    console.print(f"[bold green]✓ {len(found)} slot(s) available:[/bold green]\n")
    for slot in found:
        console.print(f"  {slot.format_display()}")
    console.print()


@app.command()
def book(
    template_id: Annotated[str, typer.Argument(help="Event template id")],
    start: Annotated[str, typer.Argument(help="Start (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="End (ISO-8601)")],
    email: Annotated[str, typer.Argument(help="Invitee email")],
    name: Annotated[str, typer.Argument(help="Invitee name")],
    tz: Annotated[str, typer.Option("--tz", help="Invitee timezone")] = "UTC",
    notes: Annotated[str, typer.Option("--notes", help="Notes for the host")] = "",
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Book a slot for an invitee.
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)
        request = BookingRequest.parse({
            "event_template_id": template_id,
            "start": start,
            "end": end,
            "invitee_email": email,
            "invitee_name": name,
            "timezone": tz,
            "notes": notes,
        })
        booking = asyncio.run(ctx.booking_service.create_booking(request))
        ctx.save()
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Booking {booking.id} ({booking.uid}) is {booking.status.value}[/green]")
    if ctx.tokens:
        console.print(f"  Reschedule token: {ctx.tokens.issue(booking.id, 'reschedule')}")
        console.print(f"  Cancel token:     {ctx.tokens.issue(booking.id, 'cancel')}")


@app.command()
def reschedule(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    start: Annotated[str, typer.Argument(help="New start (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="New end (ISO-8601)")],
    host: HostOption = None,
    token: TokenOption = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Move a booking to a new time.
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)

        async def run():
            authorized = await _authorize(ctx, booking_id, "reschedule", host, token)
            return await ctx.booking_service.reschedule(booking_id, start, end, authorized=authorized)

        booking = asyncio.run(run())
        ctx.save()
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Booking {booking.id} moved to {booking.interval}[/green]")


@app.command()
def cancel(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Cancellation reason")] = None,
    host: HostOption = None,
    token: TokenOption = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Cancel a booking.
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)

        async def run():
            authorized = await _authorize(ctx, booking_id, "cancel", host, token)
            return await ctx.booking_service.cancel(booking_id, reason, authorized=authorized)

        booking = asyncio.run(run())
        ctx.save()
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Booking {booking.id} cancelled[/green]")


@app.command()
def status(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    new_status: Annotated[str, typer.Argument(help="confirmed, cancelled, completed or no-show")],
    host: Annotated[str, typer.Option("--host", help="Host id performing the change")],
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Change the status of a booking (host only).
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)
        booking = asyncio.run(ctx.booking_service.update_status(booking_id, new_status, actor_id=host))
        ctx.save()
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Booking {booking.id} is now {booking.status.value}[/green]")


@app.command()
def bookings(
    host_id: Annotated[str, typer.Argument(help="Host id")],
    include_inactive: Annotated[bool, typer.Option("--all", help="Include cancelled, completed and no-show")] = False,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    List a host's bookings.
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)
        statuses = tuple(BookingStatus) if include_inactive else (BookingStatus.PENDING, BookingStatus.CONFIRMED)
        found = asyncio.run(ctx.repository.find_bookings(host_id, statuses=statuses))
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not found:
        console.print("[yellow]No bookings found.[/yellow]")
        return

    table = Table(title=f"Bookings of {host_id}", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="dim")
    table.add_column("When", style="bold yellow")
    table.add_column("Invitee")
    table.add_column("Status")
    table.add_column("Reschedules", justify="right")

    for booking in found:
        table.add_row(
            booking.id,
            str(booking.interval),
            booking.invitee_email,
            booking.status.value,
            str(booking.reschedule_count),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def availability(
    host_id: Annotated[str, typer.Argument(help="Host id")],
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Show a host's weekly availability (default schedule if none is stored).
    """
    try:
        ctx = _load_context(config_file, data_file, verbose)
        weekly = asyncio.run(ctx.repository.find_availability(host_id))
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    title = f"Availability of {host_id}"
    if weekly is None:
        weekly = default_availability(host_id)
        title += " (default)"

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Day", style="bold yellow")
    table.add_column("Hours")

    for day in WEEKDAYS:
        entry = weekly.schedule[day]
        hours = f"{entry.start} - {entry.end}" if entry.is_working and entry.has_hours() else "[dim]off[/dim]"
        table.add_row(day.capitalize(), hours)
    for exception in weekly.exceptions:
        hours = f"{exception.start} - {exception.end}" if exception.is_working else "[dim]off[/dim]"
        table.add_row(exception.date, hours)

    console.print()
    console.print(table)
    console.print()


@app.command()
def issue_token(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    action: Annotated[str, typer.Argument(help="reschedule or cancel")],
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Issue a capability token for an invitee link.
    """
    try:
        ctx = _load_context(config_file, None, verbose)
        if ctx.tokens is None:
            raise AuthError("tokens.secret is not configured")
        token = ctx.tokens.issue(booking_id, action)
    except (SlotbookerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    expires = pendulum.now("UTC").add(minutes=ctx.config.tokens.ttl_minutes)
    console.print(token)
    console.print(f"[dim]valid until {expires.to_iso8601_string()}[/dim]")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotbooker[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
