"""Příkaz timeline - zastávky a přesuny za jeden den."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from whence.models.timeline import ENTRY_STOP
from whence.services.geocoder import Geocoder
from whence.services.timeline_builder import TimelineBuilder
from whence.services.timezone import timezone_offset_hours
from whence.state.store import Store

console = Console()


def _format_duration(seconds: int) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if hours:
        return f"{hours} h {minutes} min"
    return f"{minutes} min"


def _local_time(timestamp: int, lon: float) -> str:
    tz = timezone(timedelta(hours=timezone_offset_hours(lon)))
    return datetime.fromtimestamp(timestamp, tz).strftime("%H:%M")


def timeline(
    ctx: typer.Context,
    date: str = typer.Argument(
        ...,
        help="Den ve formátu YYYY-MM-DD",
    ),
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="Uživatel (výchozí z konfigurace)",
    ),
    no_geocode: bool = typer.Option(
        False,
        "--no-geocode",
        help="Nedoplňovat názvy míst přes Nominatim",
    ),
) -> None:
    """Zobrazí časovou osu dne: zastávky a přesuny mezi nimi."""
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        console.print(f"[red]Chyba:[/red] Neplatné datum: {date} (použijte YYYY-MM-DD)")
        raise typer.Exit(1)

    config = ctx.obj
    config.ensure_dirs()
    store = Store(config.db_path)

    try:
        geocoder = None if no_geocode else Geocoder(store)
        with console.status("Počítám časovou osu..."):
            entries = TimelineBuilder(store, geocoder).build_day(user or config.default_user, date)
    finally:
        store.close()

    if not entries:
        console.print(f"[yellow]Pro {date} nejsou žádná data[/yellow]")
        return

    table = Table(title=f"Časová osa {date}")

    table.add_column("Čas", style="cyan")
    table.add_column("Typ")
    table.add_column("Trvání", justify="right")
    table.add_column("Místo / vzdálenost")
    table.add_column("Fotky", justify="right")

    for entry in entries:
        when = f"{_local_time(entry.timestamp, entry.lon)}–{_local_time(entry.end_timestamp, entry.lon)}"
        if entry.entry_type == ENTRY_STOP:
            place = entry.place_name or f"{entry.lat:.5f}, {entry.lon:.5f}"
            table.add_row(when, "[green]zastávka[/green]", _format_duration(entry.duration), place, str(len(entry.photos)))
        else:
            distance = f"{entry.distance_meters / 1000:.1f} km" if entry.distance_meters else "-"
            table.add_row(when, "[blue]přesun[/blue]", _format_duration(entry.duration), distance, "")

    console.print(table)
