"""relaybus CLI — Typer-based command-line interface.

Provides the ``relaybus`` command with subcommands for replaying the
ping/reply demo and inspecting the effective configuration.

All output uses Rich for formatted terminal display.
"""
