"""Invoice inspection commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ...exceptions import CashuPayError
from ...storage.session import db_session
from ...utils.config import get_settings

app = typer.Typer(name="invoices", help="🧾 Inspect and manage invoices", no_args_is_help=True)
console = Console()

STATUS_STYLES = {
    "New": "white",
    "Processing": "yellow",
    "Settled": "green",
    "Expired": "dim",
    "Invalid": "red",
}


def _status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


async def _with_service(action):
    """Run ``action(service)`` against an invoice service bound to a fresh session."""
    from ...gateway.application.services.invoice_service import create_invoice_service

    with db_session() as session:
        service = create_invoice_service(get_settings(), session=session)
        try:
            return await action(service)
        finally:
            await service.conversion.close()
            if service.dispatcher is not None:
                await service.dispatcher.close()


@app.command("list")
def list_invoices(
    store_id: str = typer.Argument(..., help="Store ID"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum invoices to show"),
):
    """List a store's invoices, newest first."""

    async def _list(service):
        invoices = service.list_invoices(store_id, status=status, limit=limit)
        return [
            (inv.id, inv.status, inv.additional_status, inv.amount, inv.currency, inv.amount_sats)
            for inv in invoices
        ]

    try:
        rows = asyncio.run(_with_service(_list))
    except CashuPayError as e:
        console.print(f"[bold red]❌ {e.message}[/bold red]")
        raise typer.Exit(1)

    if not rows:
        console.print("[yellow]No invoices found[/yellow]")
        return

    table = Table(title=f"🧾 Invoices for {store_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Additional")
    table.add_column("Amount", justify="right")
    table.add_column("Mint amount", justify="right")
    for invoice_id, inv_status, additional, amount, currency, mint_amount in rows:
        table.add_row(
            invoice_id,
            _status(inv_status),
            additional,
            f"{amount} {currency}",
            str(mint_amount),
        )
    console.print(table)


@app.command("poll")
def poll_invoice(invoice_id: str = typer.Argument(..., help="Invoice ID")):
    """Check an invoice against its mint and advance its status."""

    async def _poll(service):
        invoice = await service.poll_invoice(invoice_id)
        return None if invoice is None else (invoice.status, invoice.additional_status)

    try:
        result = asyncio.run(_with_service(_poll))
    except CashuPayError as e:
        console.print(f"[bold red]❌ {e.message}[/bold red]")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[bold red]❌ Invoice not found: {invoice_id}[/bold red]")
        raise typer.Exit(1)

    inv_status, additional = result
    console.print(f"Invoice {invoice_id}: {_status(inv_status)} ({additional})")


@app.command("status")
def set_status(
    invoice_id: str = typer.Argument(..., help="Invoice ID"),
    status: str = typer.Argument(..., help="New status: Invalid or Settled"),
):
    """Mark an invoice Invalid or Settled."""

    async def _mark(service):
        invoice = await service.update_status(invoice_id, status)
        return invoice.status

    try:
        new_status = asyncio.run(_with_service(_mark))
    except CashuPayError as e:
        console.print(f"[bold red]❌ {e.message}[/bold red]")
        raise typer.Exit(1)

    console.print(f"[bold green]✅ Invoice {invoice_id}:[/bold green] {_status(new_status)}")
