"""Operator commands for the blog service.

Commands:
    cleanup     - purge orphaned blobs and dangling attachments
"""
import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from apps.attachments.sweeper import CleanupReport, run_cleanup
from apps.storage.services import StorageInterface, pick_storage, storage_config_from_settings
from config.db import close_db, init_db
from config.logging import setup_logging
from config.settings import CLEANUP_GRACE_SECONDS, LOG_LEVEL

app = typer.Typer(
    name="blog-service",
    help="Maintenance commands for the blog service",
    no_args_is_help=True,
)
console = Console()


async def cleanup_database(db_url: Optional[str] = None,
                           storage: Optional[StorageInterface] = None,
                           grace_seconds: int = CLEANUP_GRACE_SECONDS) -> CleanupReport:
    await init_db(db_url)
    try:
        storage = storage or pick_storage(storage_config_from_settings())
        return await run_cleanup(storage, grace_seconds=grace_seconds)
    finally:
        await close_db()


def render_report(report: CleanupReport) -> None:
    table = Table(title="Attachment cleanup")
    table.add_column("Check")
    table.add_column("Removed", justify="right")
    table.add_row("Orphaned blobs purged", str(report.orphaned_blobs_purged))
    table.add_row("Dangling attachments removed", str(report.dangling_attachments_removed))
    console.print(table)

    if report.failures:
        console.print(f"[red]{len(report.failures)} blob(s) could not be purged:[/red]")
        for failure in report.failures:
            console.print(f"  {failure.blob_id} [dim]{failure.key}[/dim]: {failure.error}")
    elif not report.changed:
        console.print("[green]Nothing to clean up.[/green]")


@app.command()
def cleanup() -> None:
    """Purge orphaned blobs and remove dangling attachments."""
    setup_logging(LOG_LEVEL)
    report = asyncio.run(cleanup_database())
    render_report(report)
    if report.failures:
        raise typer.Exit(code=1)


@app.callback()
def main() -> None:
    """Blog service maintenance."""


if __name__ == "__main__":
    app()
