"""HTTP server command."""

import typer
from rich.console import Console

from ...utils.config import get_settings

app = typer.Typer(name="serve", help="🌐 Run the HTTP API")
console = Console()


@app.callback(invoke_without_command=True)
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    scheduler: bool = typer.Option(
        False, "--scheduler", help="Also run maintenance periodically in-process"
    ),
):
    """Start the API server."""
    import uvicorn

    from ...web.api import create_app

    settings = get_settings()
    console.print(f"[bold blue]CashuPay[/bold blue] API on http://{host}:{port}")
    console.print(f"Maintenance endpoint: {settings.base_url.rstrip('/')}/cron")
    if scheduler:
        console.print(
            f"In-process maintenance every {settings.maintenance_interval_seconds}s"
        )

    api = create_app(settings, enable_scheduler=scheduler)
    uvicorn.run(api, host=host, port=port, log_level=settings.log_level.lower())
