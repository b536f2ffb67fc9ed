"""Main CLI entry point for CashuPay."""

import typer
from rich.console import Console

from cashupay import __version__
from cashupay.storage.database.base import init_db
from cashupay.utils.config import get_settings
from cashupay.utils.logging import configure_from_settings

from .commands import invoices, maintenance, rates, serve, stores, webhooks

# Create main app and console
app = typer.Typer(
    name="cashupay",
    help="🥜 Cashu-backed payment gateway",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]CashuPay[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """
    CashuPay - accept Lightning payments into a Cashu mint.

    Invoices are priced in fiat or bitcoin units, paid over Lightning to a
    mint quote and settled once the mint has issued the ecash.
    """
    settings = get_settings()
    configure_from_settings(settings)

    # serve initializes the database in the app lifespan
    if ctx.invoked_subcommand not in (None, "serve"):
        init_db(settings.database_url)


# Register command groups
app.add_typer(stores.app, name="stores", help="🏪 Manage stores")
app.add_typer(invoices.app, name="invoices", help="🧾 Inspect and manage invoices")
app.add_typer(webhooks.app, name="webhooks", help="🔔 Inspect webhooks and deliveries")
app.add_typer(rates.app, name="rates", help="💱 Exchange rates and conversion")
app.add_typer(maintenance.app, name="maintenance", help="🛠️  Background maintenance")
app.add_typer(serve.app, name="serve", help="🌐 Run the HTTP API")


if __name__ == "__main__":
    app()
