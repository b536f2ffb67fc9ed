"""Maintenance commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ...gateway.application.services.background_service import (
    create_background_trigger,
    run_maintenance,
)
from ...gateway.infrastructure.repository import ConfigRepository
from ...storage.session import db_session
from ...utils.config import get_settings

app = typer.Typer(name="maintenance", help="🛠️  Background maintenance", no_args_is_help=True)
console = Console()


@app.command("run")
def run():
    """Run one maintenance sweep now.

    Useful as a system cron entry:
        */5 * * * * cashupay maintenance run
    """
    results = asyncio.run(run_maintenance(get_settings()))

    table = Table(title="🛠️  Maintenance")
    table.add_column("Task", style="cyan")
    table.add_column("Outcome")
    failed = False
    for task, outcome in results.items():
        style = "red" if outcome.startswith("error") else "green"
        failed = failed or outcome.startswith("error")
        table.add_row(task, f"[{style}]{outcome}[/{style}]")
    console.print(table)

    if failed:
        raise typer.Exit(1)


@app.command("key")
def show_key():
    """Show the internal key used by self-triggered maintenance requests."""
    settings = get_settings()
    with db_session() as session:
        trigger = create_background_trigger(settings, ConfigRepository(session))
        key = trigger.get_internal_key()
        console.print(f"Internal key: [bold]{key}[/bold]")
        console.print(f"Cron URL: {trigger.cron_url}?internal=1&key={key}")
        console.print(f"Last sync: {trigger.time_since_last_sync()}s ago")
