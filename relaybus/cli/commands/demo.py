"""``relaybus demo`` — a subscriber answering asynchronous requests once per tick.

A single subscriber registers for ``PingMessage`` and replies to each one.
The command then sends a ping every ``--interval`` seconds, awaits the
reply, and prints both sides of the exchange.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

import typer
from rich.console import Console
from rich.panel import Panel

from relaybus.core.messenger import Messenger
from relaybus.core.recipients import ReferencePolicy
from relaybus.models.messages import AsyncRequestMessage

console = Console()


class PingMessage(AsyncRequestMessage[str]):
    """Request carrying a greeting; the reply is the subscriber's answer."""

    def __init__(self, text: str) -> None:
        self.text = text


class PingSubscriber:
    """Replies ``Hi <text>`` to every ping it receives."""

    def __init__(self) -> None:
        self.received = 0

    def on_ping(self, message: PingMessage) -> None:
        self.received += 1
        console.print(f"[cyan]Received message:[/cyan] {message.text}")
        message.reply(f"Hi {message.text}")


async def run_demo(
    messenger: Messenger,
    *,
    count: int,
    interval: float,
    channel: str | None,
) -> list[str]:
    """Register a subscriber, send *count* pings, and return the replies."""
    subscriber = PingSubscriber()
    messenger.register(subscriber, PingMessage, subscriber.on_ping, channel)
    replies: list[str] = []
    try:
        for tick in range(count):
            if tick:
                await asyncio.sleep(interval)
            ping = PingMessage(f"Hello {datetime.now():%H:%M:%S}")
            response = await messenger.request(ping, channel)
            console.print(f"[green]Reply:[/green] {response}")
            replies.append(response)
    finally:
        messenger.unregister(subscriber)
    return replies


def demo_cmd(
    count: int = typer.Option(3, "--count", "-n", min=1, help="Number of pings to send."),
    interval: float = typer.Option(
        1.0, "--interval", "-i", min=0.0, help="Seconds between pings."
    ),
    channel: str = typer.Option(None, "--channel", "-c", help="Channel token to use."),
    policy: ReferencePolicy = typer.Option(
        ReferencePolicy.WEAK, "--policy", "-p", help="Recipient lifecycle policy."
    ),
) -> None:
    """Replay the ping/reply exchange between a sender and one subscriber."""
    console.print(
        Panel(
            f"[bold]relaybus demo[/bold]\n\n"
            f"policy={policy.value}  channel={channel!r}  pings={count}",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    messenger = Messenger(policy)
    replies = asyncio.run(run_demo(messenger, count=count, interval=interval, channel=channel))
    console.print(f"[bold green]Done:[/bold green] {len(replies)} replies received.")
