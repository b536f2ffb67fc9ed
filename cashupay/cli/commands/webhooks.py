"""Webhook inspection and redelivery commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ...exceptions import CashuPayError
from ...gateway.application.services.webhook_dispatcher import create_webhook_dispatcher
from ...gateway.application.services.webhook_service import WebhookService
from ...storage.session import db_session
from ...utils.config import get_settings

app = typer.Typer(name="webhooks", help="🔔 Inspect webhooks and deliveries", no_args_is_help=True)
console = Console()


@app.command("list")
def list_webhooks(store_id: str = typer.Argument(..., help="Store ID")):
    """List a store's webhooks."""
    with db_session() as session:
        webhooks = WebhookService(session).list_webhooks(store_id)
        if not webhooks:
            console.print("[yellow]No webhooks found[/yellow]")
            return

        table = Table(title=f"🔔 Webhooks for {store_id}")
        table.add_column("ID", style="cyan")
        table.add_column("URL")
        table.add_column("Events")
        table.add_column("Enabled")
        for webhook in webhooks:
            table.add_row(
                webhook.id,
                webhook.url,
                ", ".join(webhook.events) if webhook.events else "everything",
                "✅" if webhook.enabled else "❌",
            )
        console.print(table)


@app.command("deliveries")
def list_deliveries(
    webhook_id: str = typer.Argument(..., help="Webhook ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum deliveries to show"),
):
    """Show recent delivery attempts for a webhook."""
    with db_session() as session:
        try:
            deliveries = WebhookService(session).list_deliveries(webhook_id, limit=limit)
        except CashuPayError as e:
            console.print(f"[bold red]❌ {e.message}[/bold red]")
            raise typer.Exit(1)

        if not deliveries:
            console.print("[yellow]No deliveries recorded[/yellow]")
            return

        table = Table(title=f"📬 Deliveries for {webhook_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Event")
        table.add_column("Invoice")
        table.add_column("Code", justify="right")
        table.add_column("Redelivery")
        for delivery in deliveries:
            code_style = "green" if delivery.succeeded else "red"
            table.add_row(
                delivery.id,
                delivery.event_type,
                delivery.invoice_id,
                f"[{code_style}]{delivery.status_code}[/{code_style}]",
                "yes" if delivery.is_redelivery else "",
            )
        console.print(table)


@app.command("redeliver")
def redeliver(delivery_id: str = typer.Argument(..., help="Delivery ID to re-send")):
    """Re-send a recorded delivery."""
    settings = get_settings()

    async def _redeliver() -> bool:
        with db_session() as session:
            dispatcher = create_webhook_dispatcher(settings, session=session)
            try:
                return await dispatcher.redeliver(delivery_id)
            finally:
                await dispatcher.close()

    try:
        success = asyncio.run(_redeliver())
    except CashuPayError as e:
        console.print(f"[bold red]❌ {e.message}[/bold red]")
        raise typer.Exit(1)

    if success:
        console.print("[bold green]✅ Redelivered[/bold green]")
    else:
        console.print("[yellow]⚠️  Redelivery attempted but the receiver did not answer 2xx[/yellow]")
