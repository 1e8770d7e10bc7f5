"""Příkaz serve - spuštění API serveru."""

import socket
from typing import Optional

import typer
from rich.console import Console

console = Console()


def _find_available_port(host: str, start_port: int, max_attempts: int = 10) -> Optional[int]:
    """Najde volný port počínaje start_port, zkusí max_attempts portů."""
    for offset in range(max_attempts):
        candidate = start_port + offset
        if candidate > 65535:
            break
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, candidate))
                return candidate
            except OSError:
                continue
    return None


def serve(
    ctx: typer.Context,
    host: str = typer.Option(
        "0.0.0.0",
        "--host",
        help="Adresa, na které server naslouchá",
    ),
    port: int = typer.Option(
        8080,
        "--port",
        "-p",
        help="Port pro API server",
        min=1024,
        max=65535,
    ),
    no_geocode: bool = typer.Option(
        False,
        "--no-geocode",
        help="Nedoplňovat názvy míst přes Nominatim",
    ),
) -> None:
    """Spustí HTTP API (OwnTracks, GPSLogger, trasy, časová osa, Immich import)."""
    try:
        import uvicorn
        from whence.web.app import create_app
        from whence.core.logger import set_web_mode
    except ImportError:
        console.print("[red]Chyba:[/red] Web závislosti nejsou nainstalované.")
        console.print("Nainstalujte je pomocí: pip install whence[web]")
        raise typer.Exit(1)

    config = ctx.obj

    # Aktivovat web logging
    set_web_mode(True)

    console.print("[blue]Whence API[/blue]")
    console.print(f"  Databáze: {config.db_path}")
    console.print(f"  Uživatel: {config.default_user}")
    if config.immich_configured:
        console.print(f"  Immich: {config.immich_url}")
    else:
        console.print("  Immich: [dim]nenakonfigurován[/dim]")

    fastapi_app = create_app(config, geocode=not no_geocode)

    # Find available port (try up to 10 ports starting from the requested one)
    actual_port = _find_available_port(host, port)
    if actual_port is None:
        console.print(f"[red]Chyba:[/red] Nepodařilo se najít volný port (zkoušeny {port}–{port + 9})")
        raise typer.Exit(1)

    if actual_port != port:
        console.print(f"[yellow]Port {port} je obsazený, používám {actual_port}[/yellow]")

    console.print(f"[green]Server běží na:[/green] http://{host}:{actual_port}")
    console.print()
    console.print("[dim]Ctrl+C pro ukončení[/dim]")
    console.print()

    try:
        uvicorn.run(fastapi_app, host=host, port=actual_port, log_level="warning")
    except KeyboardInterrupt:
        console.print("\n[yellow]Server ukončen[/yellow]")
