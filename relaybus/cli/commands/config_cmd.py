"""``relaybus config`` — show the effective messenger settings."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from relaybus.config import MessengerSettings

console = Console()


def config_cmd() -> None:
    """Print settings resolved from RELAYBUS_* variables and .env."""
    current = MessengerSettings()
    table = Table(title="relaybus settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Environment variable", style="dim")
    for name, value in current.model_dump(mode="json").items():
        table.add_row(name, str(value), f"RELAYBUS_{name.upper()}")
    console.print(table)
