"""relaybus: an in-process, type-keyed publish/subscribe messenger.

  - Registrations keyed by (message type, channel token, recipient)
  - Strong or weak recipient lifecycle, fixed per messenger instance
  - Copy-on-dispatch snapshots: handlers run outside the registry lock
  - Request/response with a single-assignment reply slot, sync or asyncio
  - Collection requests gathering replies from every handler in order
"""

__version__ = "0.1.0"

from relaybus.core.errors import (
    AlreadyRepliedError,
    DuplicateRegistrationError,
    HandlerDispatchError,
    MessagingError,
    NoRegisteredHandlerError,
)
from relaybus.core.messenger import (
    Messenger,
    StrongReferenceMessenger,
    WeakReferenceMessenger,
    get_default_messenger,
)
from relaybus.core.receivers import receives
from relaybus.core.recipients import ReferencePolicy
from relaybus.core.registry import ALL_CHANNELS
from relaybus.models.messages import (
    AsyncCollectionRequestMessage,
    AsyncRequestMessage,
    CollectionRequestMessage,
    RequestMessage,
)
from relaybus.models.notifications import PropertyChangedMessage, ValueChangedMessage

__all__ = [
    "ALL_CHANNELS",
    "AlreadyRepliedError",
    "AsyncCollectionRequestMessage",
    "AsyncRequestMessage",
    "CollectionRequestMessage",
    "DuplicateRegistrationError",
    "HandlerDispatchError",
    "Messenger",
    "MessagingError",
    "NoRegisteredHandlerError",
    "PropertyChangedMessage",
    "ReferencePolicy",
    "RequestMessage",
    "StrongReferenceMessenger",
    "ValueChangedMessage",
    "WeakReferenceMessenger",
    "get_default_messenger",
    "receives",
    "__version__",
]
