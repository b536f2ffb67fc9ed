"""Exchange rate and conversion commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ...exceptions import CashuPayError
from ...gateway.application.services.conversion_service import create_conversion_service
from ...gateway.infrastructure.rate_cache import PersistentRateCache
from ...gateway.infrastructure.repository import ConfigRepository
from ...storage.session import db_session
from ...utils.config import get_settings

app = typer.Typer(name="rates", help="💱 Exchange rates and conversion", no_args_is_help=True)
console = Console()


@app.command("convert")
def convert(
    amount: str = typer.Argument(..., help="Amount to convert (decimal)"),
    currency: str = typer.Argument(..., help="Currency of the amount (EUR, USD, SAT, BTC...)"),
    to: str = typer.Option("sat", "--to", "-t", help="Target mint unit"),
    fee: float = typer.Option(0.0, "--fee", help="Exchange fee percent"),
    primary: str | None = typer.Option(None, "--primary", help="Primary price provider"),
    secondary: str | None = typer.Option(None, "--secondary", help="Secondary price provider"),
):
    """Convert an amount into a mint unit's smallest denomination.

    Example:
        cashupay rates convert 10.00 EUR --to sat
    """
    settings = get_settings()

    async def _convert() -> int:
        with db_session() as session:
            service = create_conversion_service(
                settings, cache=PersistentRateCache(ConfigRepository(session))
            )
            try:
                return await service.convert_to_mint_unit(
                    amount, currency, to, fee_percent=fee, primary=primary, secondary=secondary
                )
            finally:
                await service.close()

    try:
        result = asyncio.run(_convert())
    except CashuPayError as e:
        console.print(f"[bold red]❌ {e.message}[/bold red]")
        raise typer.Exit(1)

    console.print(f"{amount} {currency.upper()} = [bold green]{result}[/bold green] ({to.lower()})")


@app.command("price")
def price(
    currency: str = typer.Argument(..., help="Fiat currency (EUR, USD...)"),
    primary: str | None = typer.Option(None, "--primary", help="Primary price provider"),
    secondary: str | None = typer.Option(None, "--secondary", help="Secondary price provider"),
):
    """Show the current BTC price in a currency."""
    settings = get_settings()

    async def _price():
        with db_session() as session:
            service = create_conversion_service(
                settings, cache=PersistentRateCache(ConfigRepository(session))
            )
            try:
                value = await service.get_btc_price(currency, primary, secondary)
                return value, await service.get_cached_provider(currency)
            finally:
                await service.close()

    value, provider = asyncio.run(_price())
    if value is None:
        console.print(f"[yellow]No BTC price available for {currency.upper()}[/yellow]")
        raise typer.Exit(1)

    console.print(f"1 BTC = [bold]{value}[/bold] {currency.upper()} (via {provider})")


@app.command("info")
def info(currency: str = typer.Argument(..., help="Currency to inspect")):
    """Show the cached rate for a currency without fetching."""
    settings = get_settings()

    async def _info():
        with db_session() as session:
            service = create_conversion_service(
                settings, cache=PersistentRateCache(ConfigRepository(session))
            )
            try:
                return await service.get_rate_info(currency)
            finally:
                await service.close()

    data = asyncio.run(_info())

    table = Table(title=f"💱 Rate cache: {data['currency']}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Rate", str(data["rate"]) if data["rate"] is not None else "-")
    table.add_row("Provider", data["provider"] or "-")
    table.add_row("Age (s)", str(data["age_seconds"]) if data["age_seconds"] is not None else "-")
    table.add_row("Fresh", "✅" if data["is_fresh"] else "❌")
    table.add_row("Stale", "⚠️" if data["is_stale"] else "no")
    table.add_row("Providers", ", ".join(data["providers"]))
    console.print(table)
