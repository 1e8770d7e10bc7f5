"""Příkaz import-timeline - import Android Timeline JSON."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from whence.core.exceptions import WhenceError
from whence.services.path_indexer import PathIndexer
from whence.services.timeline_loader import DEFAULT_DEVICE_ID, TimelineLoader
from whence.state.store import Store

console = Console()

MAX_SHOWN_ERRORS = 5


def import_timeline(
    ctx: typer.Context,
    timeline_file: Path = typer.Argument(
        ...,
        help="Cesta k Timeline JSON exportu z telefonu",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    device_id: str = typer.Option(
        DEFAULT_DEVICE_ID,
        "--device",
        help="ID zařízení, pod kterým se body uloží",
    ),
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="Uživatel (výchozí z konfigurace)",
    ),
) -> None:
    """Naimportuje body z Android Timeline exportu a aktualizuje trasy."""
    config = ctx.obj
    config.ensure_dirs()

    loader = TimelineLoader(user or config.default_user, device_id)
    store = Store(config.db_path)

    try:
        samples, errors = loader.load(timeline_file)
        console.print(f"Načteno {len(samples)} bodů ({len(errors)} chybných záznamů)")
        for message in errors[:MAX_SHOWN_ERRORS]:
            console.print(f"  [yellow]⚠ {message}[/yellow]")
        if len(errors) > MAX_SHOWN_ERRORS:
            console.print(f"  [dim]... a dalších {len(errors) - MAX_SHOWN_ERRORS}[/dim]")

        with console.status("Ukládám body..."):
            inserted, skipped = store.insert_samples(samples)

        paths = 0
        if inserted > 0:
            with console.status("Aktualizuji trasy..."):
                paths = PathIndexer(store).update_for_samples(samples)

    except WhenceError as e:
        console.print(f"[red]Chyba:[/red] {e}")
        raise typer.Exit(1)
    finally:
        store.close()

    console.print()
    console.print(f"[green]Hotovo![/green] Vloženo {inserted} bodů, {skipped} duplicit přeskočeno")
    console.print(f"  - {paths} tras aktualizováno")
