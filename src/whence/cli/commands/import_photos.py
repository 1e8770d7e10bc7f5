"""Příkaz import-photos - import GPS z EXIF fotek v lokální složce."""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from whence.core.exceptions import WhenceError
from whence.models.job import ImportConfig, JobStatus, PreviewProgress
from whence.services.backfill import BackfillJobManager
from whence.services.path_indexer import PathIndexer
from whence.services.photo_scanner import LocalPhotoSource
from whence.services.timezone import parse_iso8601
from whence.state.store import Store

console = Console()


def _parse_date_option(value: Optional[str], name: str):
    if not value:
        return None
    parsed = parse_iso8601(value)
    if parsed is None:
        console.print(f"[red]Chyba:[/red] Neplatné datum pro {name}: {value}")
        raise typer.Exit(1)
    return parsed


def _print_preview(progress: PreviewProgress) -> None:
    table = Table(title="Zařízení s GPS")

    table.add_column("Zařízení", style="cyan")
    table.add_column("Fotek", style="green", justify="right")
    table.add_column("Od")
    table.add_column("Do")

    for device in progress.devices:
        table.add_row(
            device.device_id,
            str(device.count),
            device.earliest.strftime("%Y-%m-%d"),
            device.latest.strftime("%Y-%m-%d"),
        )

    console.print(table)
    console.print(f"Prohledáno {progress.scanned} fotek, {progress.photos_with_gps} s GPS")


def import_photos(
    ctx: typer.Context,
    photos_dir: Path = typer.Argument(
        ...,
        help="Cesta ke složce s fotkami",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    after: Optional[str] = typer.Option(
        None,
        "--after",
        help="Jen fotky pořízené po tomto datu (ISO 8601)",
    ),
    before: Optional[str] = typer.Option(
        None,
        "--before",
        help="Jen fotky pořízené před tímto datem (ISO 8601)",
    ),
    devices: Optional[List[str]] = typer.Option(
        None,
        "--device",
        help="Importovat jen toto zařízení (lze opakovat)",
    ),
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="Uživatel (výchozí z konfigurace)",
    ),
    preview: bool = typer.Option(
        False,
        "--preview",
        help="Jen zobrazit souhrn podle zařízení, nic neukládat",
    ),
) -> None:
    """Naimportuje GPS polohy z EXIF fotek jako body historie."""
    config = ctx.obj
    config.ensure_dirs()

    import_config = ImportConfig(
        user_id=user or config.default_user,
        after=_parse_date_option(after, "--after"),
        before=_parse_date_option(before, "--before"),
        devices=list(devices or []),
    )

    store = Store(config.db_path)
    source = LocalPhotoSource(photos_dir)
    manager = BackfillJobManager(store, source, PathIndexer(store), recover_interrupted=False)

    try:
        source.validate_connection()

        if preview:
            results: List[PreviewProgress] = []
            with console.status("Prohledávám fotky..."):
                manager.preview(import_config, results.append)
            final = results[-1]
            if final.error:
                console.print(f"[red]Chyba:[/red] {final.error}")
                raise typer.Exit(1)
            _print_preview(final)
            return

        job_id = manager.start_import(import_config)
        console.print(f"Import spuštěn: [cyan]{job_id}[/cyan]")

        updates, unsubscribe = manager.subscribe(job_id)
        try:
            if manager.is_running(job_id):
                while True:
                    progress = updates.get()
                    if progress is None:
                        break
                    console.print(
                        f"  zpracováno {progress.processed}, importováno {progress.imported}, "
                        f"přeskočeno {progress.skipped}"
                    )
            manager.wait(job_id)
        except KeyboardInterrupt:
            manager.cancel_import(job_id)
            manager.wait(job_id)
            console.print("\n[yellow]Přerušeno uživatelem[/yellow]")
            raise typer.Exit(130)
        finally:
            unsubscribe()

        result = manager.get_job_progress(job_id)

    except WhenceError as e:
        console.print(f"[red]Chyba:[/red] {e}")
        raise typer.Exit(1)
    finally:
        store.close()

    if result.status != JobStatus.COMPLETED:
        console.print(f"[red]Import skončil ve stavu {result.status.value}:[/red] {result.error or ''}")
        raise typer.Exit(1)

    console.print()
    console.print(f"[green]Hotovo![/green] Zpracováno {result.processed} fotek")
    console.print(f"  - {result.imported} nových bodů")
    console.print(f"  - {result.skipped} už uloženo")
    if result.errors > 0:
        console.print(f"  - [red]{result.errors} chyb[/red]")
