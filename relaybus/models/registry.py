"""Registry records — immutable subscription entries and registry statistics."""

from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from relaybus.core.recipients import RecipientRef


class Subscription(BaseModel):
    """One registry entry: (message type, channel, recipient, handler).

    Entries are never mutated after creation.  Replacing a handler means
    unregistering the old entry and registering a new one.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    message_type: type[Any]
    channel: Any = None
    recipient: RecipientRef
    handler: Callable[..., Any]

    @property
    def is_alive(self) -> bool:
        return self.recipient.is_alive


class RegistryStats(BaseModel):
    """Point-in-time counts describing a registry.

    Examples
    --------
    >>> RegistryStats().subscriptions
    0
    """

    model_config = ConfigDict(frozen=True)

    recipients: int = 0
    subscriptions: int = 0
    channels: int = 0
    by_message_type: dict[str, int] = Field(default_factory=dict)
