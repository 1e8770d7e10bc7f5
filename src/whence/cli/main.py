"""Hlavní CLI definice pro Whence."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from whence import __version__
from whence.core.config import Config
from whence.core.exceptions import WhenceError
from whence.core.logger import set_verbose
from whence.cli.commands.import_photos import import_photos
from whence.cli.commands.import_timeline import import_timeline
from whence.cli.commands.jobs import jobs
from whence.cli.commands.rebuild import rebuild
from whence.cli.commands.serve import serve
from whence.cli.commands.status import status
from whence.cli.commands.timeline import timeline

console = Console()


def version_callback(value: bool) -> None:
    if value:
        print(f"whence {__version__}")
        raise typer.Exit()


def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Cesta ke konfiguraci (výchozí ~/.config/whence/config.json)",
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        "-d",
        help="Složka s databází (přepíše konfiguraci)",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Podrobný výpis volání služeb s parametry",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Zobrazí verzi programu",
    ),
) -> None:
    """Historie polohy: trasy, časová osa a import GPS z fotek."""
    try:
        config = Config.load(config_path, data_dir=data_dir)
    except WhenceError as e:
        console.print(f"[red]Chyba:[/red] {e}")
        raise typer.Exit(1)

    config.verbose = verbose
    set_verbose(verbose)
    ctx.obj = config


app = typer.Typer(no_args_is_help=True)
app.callback()(main)
app.command()(serve)
app.command()(rebuild)
app.command("import-timeline")(import_timeline)
app.command("import-photos")(import_photos)
app.command()(jobs)
app.command()(timeline)
app.command()(status)


if __name__ == "__main__":
    app()
