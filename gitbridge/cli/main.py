"""gitbridge server CLI."""

from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from gitbridge.cli import __version__
from gitbridge.core.config import settings

app = typer.Typer(
    name="gitbridge",
    help="gitbridge - serve git repositories over smart HTTP with push hooks",
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    pretty_exceptions_enable=False,
)

console = Console()


def apply_serve_options(
    port: int,
    path: Path,
    masteronly: bool,
    autocreate: bool,
    debug: bool,
    host: Optional[str] = None,
    webhook_url: Optional[str] = None,
) -> None:
    """Copy command line flags onto the process-wide settings"""
    settings.api_port = port
    settings.storage_root = path.expanduser()
    settings.master_only = masteronly
    settings.auto_create = autocreate
    settings.debug = debug
    if host:
        settings.api_host = host
    if webhook_url:
        settings.post_receive_webhook_url = webhook_url


@app.command()
def serve(
    port: int = typer.Option(80, "--port", "-p", help="The port to listen on"),
    path: Path = typer.Option(
        Path("./repositories"),
        "--path",
        help="The path where repositories are stored",
    ),
    masteronly: bool = typer.Option(False, "--masteronly", help="Only allow pushing to master"),
    autocreate: bool = typer.Option(
        False, "--autocreate", help="Create repositories that do not exist on push"
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind to"),
    webhook_url: Optional[str] = typer.Option(
        None, "--webhook-url", help="URL notified after every accepted push"
    ),
):
    """
    Run the git smart HTTP server.
    """
    apply_serve_options(port, path, masteronly, autocreate, debug, host, webhook_url)

    from gitbridge.main import create_app

    table = Table(title="gitbridge", show_header=False)
    table.add_row("Listening", f"{settings.api_host}:{settings.api_port}")
    table.add_row("Repositories", str(settings.storage_root))
    table.add_row("Master only", "yes" if settings.master_only else "no")
    table.add_row("Auto-create", "yes" if settings.auto_create else "no")
    console.print(table)

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.effective_log_level.lower(),
    )


@app.command()
def version():
    """Show version and exit."""
    console.print(f"gitbridge v{__version__}")


if __name__ == "__main__":
    app()
