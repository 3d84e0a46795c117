"""Main CLI entry point for switchboard."""

import typer
from rich.console import Console

from switchboard.cli.commands import config, keys, test

app = typer.Typer(
    name="swb",
    help="Switchboard CLI - route LLM requests across providers and keys",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(config.app, name="config", help="Configuration management")
app.add_typer(keys.app, name="keys", help="API key pool management")
app.add_typer(test.app, name="test", help="Test commands")


@app.command()
def version() -> None:
    """Show version information."""
    from switchboard import __version__

    console = Console()
    console.print(f"[bold cyan]swb[/bold cyan] version [green]{__version__}[/green]")


@app.command()
def start(
    host: str = typer.Option(None, "--host", help="Override host"),
    port: int = typer.Option(None, "--port", help="Override port"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
) -> None:
    """Start the HTTP server."""
    import uvicorn

    from switchboard.core.config import get_config
    from switchboard.core.logging import configure_root_logging

    config = get_config()
    console = Console()
    log_level = configure_root_logging(config.log_level)

    server_host = host or config.host
    server_port = port or config.port

    console.print("[bold green]Starting Switchboard server...[/bold green]")
    console.print(f"Host: {server_host}")
    console.print(f"Port: {server_port}")

    uvicorn.run(
        "switchboard.main:create_app",
        factory=True,
        host=server_host,
        port=server_port,
        reload=reload,
        log_level=log_level.lower(),
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Switchboard CLI."""
    if verbose:
        from switchboard.core.logging import configure_root_logging

        configure_root_logging("DEBUG")


if __name__ == "__main__":
    app()
