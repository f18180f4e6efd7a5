"""relaybus data models — message shapes, notifications, and registry records."""

from relaybus.models.messages import (
    AsyncCollectionRequestMessage,
    AsyncRequestMessage,
    CollectionRequestMessage,
    RequestMessage,
)
from relaybus.models.notifications import PropertyChangedMessage, ValueChangedMessage
from relaybus.models.registry import RegistryStats, Subscription

__all__ = [
    "AsyncCollectionRequestMessage",
    "AsyncRequestMessage",
    "CollectionRequestMessage",
    "PropertyChangedMessage",
    "RegistryStats",
    "RequestMessage",
    "Subscription",
    "ValueChangedMessage",
]
