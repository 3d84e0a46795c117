"""Key pool commands for the swb CLI.

These operate directly on the JSON key store; a running server picks up
the changes at its next start.
"""

import sys

import typer
from rich.console import Console
from rich.table import Table

from switchboard.core.config import get_config
from switchboard.core.exceptions import CredentialNotFound, StorageError
from switchboard.core.key_pool import KeyPool
from switchboard.core.providers import Provider
from switchboard.core.storage import JsonFileStore

app = typer.Typer(help="API key pool management")

STORE_OPTION = typer.Option(None, "--store", help="Key store path (defaults to KEY_STORE_PATH)")


def _open(store_path: str | None) -> tuple[KeyPool, JsonFileStore]:
    store = JsonFileStore(store_path or get_config().key_store_path)
    pool = KeyPool()
    try:
        pool.load(store)
    except StorageError as e:
        Console().print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    return pool, store


def _parse_provider(value: str) -> Provider:
    try:
        return Provider.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


@app.command("list")
def list_keys(
    provider: str = typer.Option(None, "--provider", "-p", help="Only this provider"),
    store: str = STORE_OPTION,
) -> None:
    """List keys with masked secrets."""
    pool, _ = _open(store)
    keys = pool.list_keys(_parse_provider(provider) if provider else None)

    table = Table(title=f"API Keys ({len(keys)})")
    table.add_column("ID", style="cyan")
    table.add_column("Provider")
    table.add_column("Label")
    table.add_column("Secret")
    table.add_column("Active")
    table.add_column("Usage", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Health", justify="right")
    for key in keys:
        table.add_row(
            key.id,
            key.provider.value,
            key.label,
            key.masked_secret,
            "[green]yes[/green]" if key.is_active else "[red]no[/red]",
            str(key.usage_count),
        )
    Console().print(table)


@app.command()
def add(
    provider: str = typer.Argument(..., help="Provider name"),
    secret: str = typer.Argument(..., help="API key"),
    label: str = typer.Option(None, "--label", "-l", help="Display label"),
    store: str = STORE_OPTION,
) -> None:
    """Add a key to the pool."""
    console = Console()
    pool, key_store = _open(store)
    parsed = _parse_provider(provider)
    if pool.contains_secret(parsed, secret.strip()):
        console.print(f"[yellow]Key already present for {parsed.value}[/yellow]")
        return
    credential = pool.add(parsed, secret, label)
    pool.save(key_store)
    console.print(f"[green]✅ Added {credential.id} ({credential.masked_secret})[/green]")


@app.command()
def remove(credential_id: str = typer.Argument(...), store: str = STORE_OPTION) -> None:
    """Remove a key by id."""
    console = Console()
    pool, key_store = _open(store)
    try:
        credential = pool.remove(credential_id)
    except CredentialNotFound as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    pool.save(key_store)
    console.print(f"[green]✅ Removed {credential.id}[/green]")


@app.command()
def toggle(credential_id: str = typer.Argument(...), store: str = STORE_OPTION) -> None:
    """Activate or deactivate a key."""
    console = Console()
    pool, key_store = _open(store)
    try:
        credential = pool.toggle_active(credential_id)
    except CredentialNotFound as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    pool.save(key_store)
    state = "active" if credential.is_active else "inactive"
    console.print(f"[green]✅ {credential.id} is now {state}[/green]")


@app.command()
def stats(store: str = STORE_OPTION) -> None:
    """Show key counts, usage and health per provider."""
    pool, _ = _open(store)
    table = Table(title="Key Pool")
    table.add_column("Provider", style="cyan")
    table.add_column("Keys", justify="right")
    table.add_column("Active", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Health", justify="right")
    for provider in Provider:
        provider_stats = pool.stats(provider)
        table.add_row(
            provider.value,
            str(provider_stats.total_keys),
            str(provider_stats.active_keys),
            str(provider_stats.total_usage),
            str(provider_stats.total_errors),
            f"{provider_stats.average_health_score:.0f}" if provider_stats.total_keys else "-",
        )
    Console().print(table)
