"""Configuration commands for the swb CLI."""

import sys

import typer
from rich.console import Console
from rich.table import Table

from switchboard.core.config import ConfigSchema, get_config, validate_all

app = typer.Typer(help="Configuration management")


@app.command()
def show() -> None:
    """Show the effective configuration."""
    console = Console()
    config = get_config()

    table = Table(title="Switchboard Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Host", config.host)
    table.add_row("Port", str(config.port))
    table.add_row("Log Level", config.log_level)
    table.add_row("HTTP API Key", config.api_key_hash)
    table.add_row(
        "Active Provider", config.active_provider.value if config.active_provider else "(auto)"
    )
    table.add_row("Fallback Order", ", ".join(p.value for p in config.fallback_order))
    table.add_row("Key Store", config.key_store_path)
    table.add_row("Request Timeout", f"{config.request_timeout}s")
    table.add_row("Max Attempts", str(config.engine.max_attempts))
    console.print(table)

    providers = Table(title="Providers")
    providers.add_column("Provider", style="cyan")
    providers.add_column("Model", style="green")
    providers.add_column("RPM", justify="right")
    providers.add_column("Concurrency", justify="right")
    providers.add_column("Env Keys", justify="right")
    providers.add_column("Base URL")
    for provider, capability in config.capabilities().items():
        providers.add_row(
            provider.value,
            capability.default_model,
            str(capability.rate_limit_rpm),
            str(capability.concurrency),
            str(len(config.env_keys(provider))),
            capability.base_url,
        )
    console.print(providers)


@app.command()
def validate() -> None:
    """Validate every environment variable."""
    console = Console()
    errors = validate_all()
    if errors:
        for error in errors:
            console.print(f"[red]❌ {error}[/red]")
        sys.exit(1)
    console.print("[green]✅ Configuration is valid[/green]")


@app.command()
def docs() -> None:
    """Print the environment variable reference as Markdown."""
    print(ConfigSchema.generate_markdown_docs())
