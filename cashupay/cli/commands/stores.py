"""Store management commands."""

import typer
from rich.console import Console
from rich.table import Table

from ...gateway.domain.models import Store
from ...gateway.infrastructure.repository import StoreRepository
from ...storage.session import db_session
from ...utils.config import get_settings

app = typer.Typer(name="stores", help="🏪 Manage stores", no_args_is_help=True)
console = Console()


@app.command("create")
def create_store(
    name: str = typer.Argument(..., help="Store name"),
    mint_url: str | None = typer.Option(None, "--mint", help="Primary mint URL"),
    unit: str = typer.Option("sat", "--unit", help="Mint unit (sat, msat, eur, usd...)"),
    seed: str | None = typer.Option(None, "--seed", help="Wallet seed phrase"),
    backup_mint: list[str] = typer.Option([], "--backup-mint", help="Backup mint URL (repeatable)"),
    fee: float = typer.Option(0.0, "--fee", help="Exchange fee percent"),
    primary: str | None = typer.Option(None, "--primary", help="Primary price provider"),
    secondary: str | None = typer.Option(None, "--secondary", help="Secondary price provider"),
):
    """Create a store."""
    settings = get_settings()

    with db_session() as session:
        store = Store(
            name=name,
            mint_url=mint_url.rstrip("/") if mint_url else None,
            mint_unit=unit.lower(),
            seed_phrase=seed,
            backup_mint_urls=[url.rstrip("/") for url in backup_mint],
            exchange_fee_percent=fee,
            price_provider_primary=primary or settings.default_price_provider_primary,
            price_provider_secondary=secondary or settings.default_price_provider_secondary,
        )
        StoreRepository(session).save(store)
        configured = store.is_configured
        console.print(f"[bold green]✅ Store created:[/bold green] {store.id}")

    if not configured:
        console.print("[yellow]⚠️  Store needs a mint URL and seed phrase before invoicing[/yellow]")


@app.command("list")
def list_stores():
    """List stores."""
    with db_session() as session:
        stores = StoreRepository(session).find_all()

        if not stores:
            console.print("[yellow]No stores found[/yellow]")
            return

        table = Table(title="🏪 Stores")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Mint")
        table.add_column("Unit")
        table.add_column("Fee %", justify="right")
        table.add_column("Configured")
        for store in stores:
            table.add_row(
                store.id,
                store.name,
                store.mint_url or "-",
                store.mint_unit,
                f"{store.exchange_fee_percent:g}",
                "✅" if store.is_configured else "❌",
            )
        console.print(table)


@app.command("delete")
def delete_store(
    store_id: str = typer.Argument(..., help="Store ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a store with its invoices and webhooks."""
    with db_session() as session:
        repo = StoreRepository(session)
        store = repo.find_by_id(store_id)
        if store is None:
            console.print(f"[bold red]❌ Store not found: {store_id}[/bold red]")
            raise typer.Exit(1)

        if not yes and not typer.confirm(f"Delete store '{store.name}' and all its data?"):
            raise typer.Abort()

        repo.delete(store)
        console.print(f"[bold green]✅ Store deleted:[/bold green] {store_id}")
