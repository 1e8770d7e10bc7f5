"""Příkaz jobs - přehled importních jobů."""

from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from whence.models.job import JobStatus
from whence.state.store import Store

console = Console()

STATUS_STYLES = {
    JobStatus.RUNNING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "dim",
    JobStatus.INTERRUPTED: "yellow",
}


def _format_ts(value: Optional[int]) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M")


def jobs(
    ctx: typer.Context,
    status: Optional[JobStatus] = typer.Option(
        None,
        "--status",
        "-s",
        help="Jen joby v tomto stavu",
        case_sensitive=False,
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximální počet zobrazených jobů",
        min=1,
    ),
) -> None:
    """Zobrazí importní joby od nejnovějšího."""
    config = ctx.obj
    config.ensure_dirs()
    store = Store(config.db_path)
    try:
        job_list = store.list_jobs(status=status, limit=limit)
    finally:
        store.close()

    if not job_list:
        console.print("[yellow]Žádné importní joby[/yellow]")
        return

    table = Table(title="Importní joby")

    table.add_column("ID", style="cyan")
    table.add_column("Stav")
    table.add_column("Zahájeno")
    table.add_column("Dokončeno")
    table.add_column("Stránka", justify="right")
    table.add_column("Zpracováno", justify="right")
    table.add_column("Importováno", justify="right", style="green")
    table.add_column("Přeskočeno", justify="right")
    table.add_column("Chyby", justify="right")

    for job in job_list:
        style = STATUS_STYLES.get(job.status, "white")
        errors = f"[red]{job.errors}[/red]" if job.errors else "0"
        table.add_row(
            job.id[:8],
            f"[{style}]{job.status.value}[/{style}]",
            _format_ts(job.started_at),
            _format_ts(job.completed_at),
            str(job.last_page),
            str(job.processed),
            str(job.imported),
            str(job.skipped),
            errors,
        )

    console.print(table)

    for job in job_list:
        if job.last_error:
            console.print(f"[dim]{job.id[:8]}:[/dim] {job.last_error}")
