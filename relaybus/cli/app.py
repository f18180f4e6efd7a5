"""Main Typer application — imports and registers all CLI commands.

Entry point: ``relaybus`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from relaybus.cli.commands.config_cmd import config_cmd
from relaybus.cli.commands.demo import demo_cmd
from relaybus.config import settings

app = typer.Typer(
    name="relaybus",
    help="relaybus: in-process publish/subscribe messenger.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (defaults to RELAYBUS_LOG_LEVEL)."
    ),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="demo", help="Send pings to a subscriber and print its replies.")(demo_cmd)
app.command(name="config", help="Show the effective settings.")(config_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
