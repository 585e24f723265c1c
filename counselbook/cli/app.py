"""
Main CLI application using Typer.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Annotated

import pendulum
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.google_calendar import GoogleCalendarClient
from ..adapters.google_oauth import GoogleOAuthClient
from ..adapters.json_store import JsonCounselorRepository, JsonSessionRepository
from ..adapters.student_lookup import StudentLookupRelay
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import BadRequest, CounselBookError, NotConnected, RefreshFailed
from ..domain.models import ConnectionState, Counselor, SessionRecord
from ..domain.slot_calculator import SlotCalculator
from ..schemas import (
    AuthorizeUrlRequest,
    BookSessionRequest,
    OAuthCallbackRequest,
    SlotQuery,
    error_envelope,
    session_envelope,
    sessions_envelope,
    slots_envelope,
    success_envelope,
    url_envelope,
)
from ..services.availability import AvailabilityService
from ..services.booking import BookingOrchestrator
from ..services.credential_store import CredentialStore
from ..services.oauth_session import OAuthSessionManager

app = typer.Typer(
    name="counselbook",
    help="Connect counselor calendars and book counselling sessions",
    add_completion=False
)
counselor_app = typer.Typer(help="Manage counselor records")
app.add_typer(counselor_app, name="counselor")

console = Console()
logger = logging.getLogger(__name__)

STATE_STYLES = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.REFRESHING: "cyan",
    ConnectionState.PENDING_CALLBACK: "yellow",
    ConnectionState.DISCONNECTED: "red",
}


@dataclass
class Services:
    """Everything a command needs, wired from one configuration."""
    config: AppConfig
    store: CredentialStore
    oauth: OAuthSessionManager
    availability: AvailabilityService
    booking: BookingOrchestrator
    student_lookup: StudentLookupRelay


@dataclass
class CliState:
    config_file: Optional[Path] = None
    json_output: bool = False


def _build_services(config: AppConfig) -> Services:
    """Construct adapters and services explicitly from the configuration."""
    store = CredentialStore(JsonCounselorRepository(config.storage.counselors_file))

    oauth_client = GoogleOAuthClient(
        client_id=config.google.client_id,
        client_secret=config.google.client_secret,
        redirect_uri=config.google.redirect_uri,
        scopes=config.google.scopes,
        auth_url=config.google.auth_url,
        token_url=config.google.token_url,
        timeout_seconds=config.google.timeout_seconds,
    )
    oauth = OAuthSessionManager(
        store,
        oauth_client,
        skew_seconds=config.scheduling.token_skew_seconds,
        state_ttl_seconds=config.scheduling.oauth_state_ttl_seconds,
    )

    calendar_client = GoogleCalendarClient(
        base_url=config.calendar.base_url,
        timeout_seconds=config.calendar.timeout_seconds,
        max_retries=config.calendar.max_retries,
        backoff_seconds=config.calendar.backoff_seconds,
    )
    student_lookup = StudentLookupRelay(
        base_url=config.student_lookup.base_url,
        timeout_seconds=config.student_lookup.timeout_seconds,
    )

    calculator = SlotCalculator()
    availability = AvailabilityService(
        store, oauth, calendar_client, calculator, defaults=config.scheduling
    )
    booking = BookingOrchestrator(
        store,
        oauth,
        availability,
        calendar_client,
        student_lookup,
        JsonSessionRepository(config.storage.sessions_file),
        slot_calculator=calculator,
    )

    return Services(
        config=config,
        store=store,
        oauth=oauth,
        availability=availability,
        booking=booking,
        student_lookup=student_lookup,
    )


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False)],
        force=True,
    )


def _emit_json(data: Dict[str, Any]) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _load_services(ctx: typer.Context) -> Services:
    state: CliState = ctx.obj
    config_path = state.config_file or get_default_config_path()
    try:
        config = AppConfig.load_from_yaml(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)
    return _build_services(config)


def _fail(ctx: typer.Context, error: CounselBookError, connected: Optional[bool] = None) -> None:
    state: CliState = ctx.obj
    if state.json_output:
        _emit_json(error_envelope(error, connected=connected))
    else:
        console.print(f"[bold red]Error ({error.code}):[/bold red] {error.message}")
        details = {k: v for k, v in error.to_dict().items() if k not in ("code", "message")}
        for key, value in details.items():
            console.print(f"   {key}: {value}")
    raise typer.Exit(1)


def _execute(
    ctx: typer.Context,
    action: Callable[[Services], Any],
    render: Callable[[Any], None],
    envelope: Callable[[Any], Dict[str, Any]],
) -> None:
    """
    Run one command: build services, execute, print the result or the error.

    ``action`` may return a coroutine; it is driven with ``asyncio.run``.
    """
    services = _load_services(ctx)
    try:
        result = action(services)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
    except CounselBookError as e:
        logger.debug("Command failed", exc_info=True)
        _fail(ctx, e)

    state: CliState = ctx.obj
    if state.json_output:
        _emit_json(envelope(result))
    else:
        render(result)


def _validated(ctx: typer.Context, model, **values):
    try:
        return model(**values)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg')}" if location else first.get("msg")
        _fail(ctx, BadRequest(message))


def _print_session(record: SessionRecord) -> None:
    console.print(Panel.fit(
        f"[bold]Session:[/bold] {record.session_id}\n"
        f"[bold]Student:[/bold] {record.student_id}\n"
        f"[bold]Counselor:[/bold] {record.counselor_id}\n"
        f"[bold]When:[/bold] {record.session_datetime.format('dddd, YYYY-MM-DD HH:mm')}"
        f" - {record.session_end.format('HH:mm')}\n"
        f"[bold]Status:[/bold] {record.status.value}\n"
        f"[bold]Calendar event:[/bold] {record.remote_event_id}",
        title="Counselling session",
    ))


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Print JSON envelopes instead of tables.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """
    Counselor calendar integration and session booking.
    """
    _configure_logging(verbose)
    ctx.obj = CliState(config_file=config_file, json_output=json_output)


@counselor_app.command("add")
def counselor_add(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Numeric counselor id")],
    name: Annotated[str, typer.Argument(help="Display name")],
    email: Annotated[str, typer.Argument(help="Counselor e-mail (also the default calendar id)")],
    calendar_id: Annotated[Optional[str], typer.Option("--calendar-id", help="Calendar to use instead of the e-mail")] = None,
    timezone: Annotated[Optional[str], typer.Option("--timezone", help="IANA timezone, e.g. Asia/Kolkata")] = None,
    work_start: Annotated[Optional[str], typer.Option("--work-start", help="Start of working hours (HH:MM)")] = None,
    work_end: Annotated[Optional[str], typer.Option("--work-end", help="End of working hours (HH:MM)")] = None,
):
    """
    Register a counselor.
    """
    counselor = Counselor(
        counselor_id=counselor_id,
        name=name,
        email=email,
        calendar_id=calendar_id,
        timezone=timezone,
        work_start_time=work_start,
        work_end_time=work_end,
    )
    _execute(
        ctx,
        lambda services: services.store.add_counselor(counselor),
        lambda added: console.print(f"\n[green]✓ Counselor {added.counselor_id} ({added.name}) added.[/green]\n"),
        lambda added: success_envelope(counselor_id=added.counselor_id),
    )


@counselor_app.command("list")
def counselor_list(ctx: typer.Context):
    """
    List counselors and their calendar connection state.
    """
    def render(counselors):
        if not counselors:
            console.print("[yellow]No counselors registered yet.[/yellow]")
            return

        table = Table(title="Counselors", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="bold yellow")
        table.add_column("Name")
        table.add_column("Calendar", style="dim")
        table.add_column("State")

        for counselor in counselors:
            state = counselor.connection_state
            table.add_row(
                str(counselor.counselor_id),
                counselor.name,
                counselor.effective_calendar_id,
                f"[{STATE_STYLES[state]}]{state.value}[/{STATE_STYLES[state]}]",
            )

        console.print()
        console.print(table)
        console.print()

    _execute(
        ctx,
        lambda services: services.store.list(),
        render,
        lambda counselors: success_envelope(counselors=[
            {
                "counselor_id": c.counselor_id,
                "name": c.name,
                "email": c.email,
                "state": c.connection_state.value,
            }
            for c in counselors
        ]),
    )


@app.command("authorize-url")
def authorize_url(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor to connect")],
):
    """
    Print the Google consent URL for a counselor.
    """
    request = _validated(ctx, AuthorizeUrlRequest, counselor_id=counselor_id)
    _execute(
        ctx,
        lambda services: services.oauth.begin_authorization(request.counselor_id),
        lambda url: console.print(f"\nOpen this URL to connect the calendar:\n\n{url}\n"),
        url_envelope,
    )


@app.command()
def callback(
    ctx: typer.Context,
    code: Annotated[str, typer.Option("--code", help="Authorization code from the redirect")],
    state: Annotated[str, typer.Option("--state", help="State value from the redirect")],
):
    """
    Complete the authorization with the values Google redirected back with.
    """
    request = _validated(ctx, OAuthCallbackRequest, code=code, state=state)
    _execute(
        ctx,
        lambda services: services.oauth.complete_authorization(request.code, request.state),
        lambda counselor: console.print(
            f"\n[green]✓ Calendar connected for counselor {counselor.counselor_id} ({counselor.name}).[/green]\n"
        ),
        lambda counselor: success_envelope(counselor_id=counselor.counselor_id),
    )


@app.command()
def status(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor id")],
):
    """
    Show the calendar connection state of a counselor.
    """
    def render(state: ConnectionState):
        style = STATE_STYLES[state]
        console.print(f"\nCounselor {counselor_id}: [{style}]{state.value}[/{style}]\n")

    _execute(
        ctx,
        lambda services: services.oauth.connection_state(counselor_id),
        render,
        lambda state: {"connected": state is ConnectionState.CONNECTED, "state": state.value},
    )


@app.command()
def disconnect(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor id")],
):
    """
    Forget the stored Google credentials of a counselor.
    """
    _execute(
        ctx,
        lambda services: services.oauth.disconnect(counselor_id),
        lambda counselor: console.print(f"\n[green]✓ Counselor {counselor.counselor_id} disconnected.[/green]\n"),
        lambda counselor: success_envelope(),
    )


@app.command()
def slots(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor id")],
    day: Annotated[Optional[str], typer.Option("--date", help="Date (YYYY-MM-DD). Defaults to today.")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Session duration in minutes")] = None,
):
    """
    List the free slots of a counselor for one day.
    """
    services = _load_services(ctx)
    defaults = services.config.scheduling
    query = _validated(
        ctx,
        SlotQuery,
        counselor_id=counselor_id,
        date=day or pendulum.now(defaults.timezone).to_date_string(),
        duration=duration if duration is not None else defaults.duration_minutes,
    )

    state: CliState = ctx.obj
    try:
        found = asyncio.run(
            services.availability.compute_slots(query.counselor_id, query.date, query.duration)
        )
    except (NotConnected, RefreshFailed) as e:
        if state.json_output:
            _emit_json(slots_envelope([], connected=False))
            return
        _fail(ctx, e, connected=False)
    except CounselBookError as e:
        _fail(ctx, e)

    if state.json_output:
        _emit_json(slots_envelope(found))
        return

    console.print()
    if not found:
        console.print(
            f"[yellow]⚠ No free {query.duration}-minute slots on {query.date}.[/yellow]\n"
            "Try another day or a shorter duration."
        )
    else:
        console.print(f"[bold green]✓ {len(found)} free slot(s) found:[/bold green]\n")
        for slot in found:
            console.print(f"  {slot.format_display()}")
    console.print()


@app.command()
def book(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor id")],
    student_id: Annotated[str, typer.Argument(help="Student code")],
    start: Annotated[str, typer.Option("--start", help="Slot start (ISO 8601 with offset)")],
    end: Annotated[str, typer.Option("--end", help="Slot end (ISO 8601 with offset)")],
    notes: Annotated[str, typer.Option("--notes", help="Notes for the calendar event")] = "",
):
    """
    Book a session for a student in a free slot.
    """
    request = _validated(
        ctx,
        BookSessionRequest,
        counselor_id=counselor_id,
        student_id=student_id,
        slot={"start": start, "end": end},
        notes=notes,
    )
    _execute(
        ctx,
        lambda services: services.booking.book(
            request.counselor_id,
            request.student_id,
            request.slot.to_time_slot(),
            request.notes,
        ),
        _print_session,
        session_envelope,
    )


@app.command()
def cancel(
    ctx: typer.Context,
    session_id: Annotated[int, typer.Argument(help="Session id")],
):
    """
    Cancel a booked session and remove its calendar event.
    """
    _execute(
        ctx,
        lambda services: services.booking.cancel(session_id),
        _print_session,
        session_envelope,
    )


@app.command()
def sessions(
    ctx: typer.Context,
    counselor_id: Annotated[int, typer.Argument(help="Counselor id")],
):
    """
    List the sessions of a counselor, newest first.
    """
    def render(records):
        if not records:
            console.print("[yellow]No sessions booked.[/yellow]")
            return

        table = Table(title=f"Sessions of counselor {counselor_id}", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="bold yellow")
        table.add_column("Student")
        table.add_column("When")
        table.add_column("Status")
        table.add_column("Notes", style="dim")

        for record in records:
            table.add_row(
                str(record.session_id),
                record.student_id,
                f"{record.session_datetime.format('YYYY-MM-DD HH:mm')} - {record.session_end.format('HH:mm')}",
                record.status.value,
                record.notes,
            )

        console.print()
        console.print(table)
        console.print()

    _execute(
        ctx,
        lambda services: services.booking.list_sessions(counselor_id),
        render,
        sessions_envelope,
    )


@app.command("lookup-student")
def lookup_student(
    ctx: typer.Context,
    code: Annotated[str, typer.Argument(help="Student code")],
):
    """
    Look a student up in the identity service.
    """
    _execute(
        ctx,
        lambda services: services.student_lookup.lookup(code),
        lambda student: console.print(Panel.fit(
            f"[bold]Code:[/bold] {student.code}\n"
            f"[bold]Name:[/bold] {student.name or 'N/A'}\n"
            f"[bold]E-mail:[/bold] {student.email or 'N/A'}",
            title="Student",
        )),
        lambda student: success_envelope(student=student.raw),
    )


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]counselbook[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
