"""Příkaz rebuild - přepočet všech tras z uložených bodů."""

import typer
from rich.console import Console

from whence.services.path_indexer import PathIndexer
from whence.state.store import Store

console = Console()


def rebuild(ctx: typer.Context) -> None:
    """Smaže uložené trasy a spočítá je znovu ze všech bodů."""
    config = ctx.obj
    config.ensure_dirs()
    store = Store(config.db_path)

    try:
        with console.status("Přepočítávám trasy..."):
            count = PathIndexer(store).rebuild_all()
    finally:
        store.close()

    console.print(f"[green]Hotovo![/green] Přepočítáno {count} tras")
