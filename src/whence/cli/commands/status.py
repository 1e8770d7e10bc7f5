"""Příkaz status - přehled uložených dat."""

from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

from whence.state.store import Store

console = Console()


def status(ctx: typer.Context) -> None:
    """Zobrazí stav databáze a konfigurace."""
    config = ctx.obj

    if not config.db_path.exists():
        console.print("[yellow]Databáze zatím neexistuje[/yellow]")
        console.print("Spusťte 'whence serve' nebo 'whence import-timeline' pro první data.")
        return

    store = Store(config.db_path)
    try:
        stats = store.stats()
        latest = store.latest_sample()
        last_sync = store.get_last_sync_timestamp()
    finally:
        store.close()

    table = Table(title="Whence")

    table.add_column("Metrika", style="cyan")
    table.add_column("Hodnota", style="green")

    table.add_row("Databáze", str(config.db_path))
    table.add_row("Bodů", str(stats["locations"]))
    table.add_row("Z toho z fotek", str(stats["photo_sources"]))
    table.add_row("Tras (dní)", str(stats["paths"]))
    table.add_row("Bodů v trasách", str(stats["path_points"]))
    table.add_row("Importních jobů", str(stats["jobs"]))
    table.add_row("Míst v geocache", str(stats["geocache"]))

    if latest:
        when = datetime.fromtimestamp(latest.timestamp).strftime("%Y-%m-%d %H:%M")
        table.add_row("Poslední bod", f"{when} ({latest.device_id})")

    if config.immich_configured:
        table.add_row("Immich", config.immich_url)
        synced = datetime.fromtimestamp(last_sync).strftime("%Y-%m-%d %H:%M") if last_sync else "-"
        table.add_row("Poslední sync", synced)
    else:
        table.add_row("Immich", "[dim]nenakonfigurován[/dim]")

    console.print(table)
