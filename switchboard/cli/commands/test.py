"""Test commands for the swb CLI."""

import asyncio
import sys

import typer
from rich.console import Console

from switchboard.core.config import get_config
from switchboard.core.exceptions import NoKeyAvailable
from switchboard.core.orchestrator import Orchestrator
from switchboard.core.providers import Provider

app = typer.Typer(help="Test commands")


async def _test_connection(provider: Provider, api_key: str | None) -> bool:
    orchestrator = Orchestrator.from_config(get_config())
    await orchestrator.start()
    try:
        return await orchestrator.test_connection(provider, api_key)
    finally:
        await orchestrator.stop()


@app.command()
def connection(
    provider: str = typer.Argument(..., help="Provider to test"),
    api_key: str = typer.Option(None, "--api-key", help="Test this key instead of a pooled one"),
) -> None:
    """Send a minimal request to a provider."""
    console = Console()
    try:
        parsed = Provider.parse(provider)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(2)

    console.print(f"[bold cyan]Testing {parsed.value} connectivity[/bold cyan]")
    try:
        ok = asyncio.run(_test_connection(parsed, api_key))
    except (ValueError, NoKeyAvailable) as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    if ok:
        console.print(f"[green]✅ {parsed.value} answered[/green]")
    else:
        console.print(f"[red]❌ {parsed.value} did not answer successfully[/red]")
        sys.exit(1)
