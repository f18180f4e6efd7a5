"""Error kinds raised by the messenger.

Every failure is local and synchronous to the call that triggered it.
Nothing here is retried internally.
"""

from __future__ import annotations

from typing import Any, Callable


class MessagingError(RuntimeError):
    """Base class for every error raised by relaybus."""


class DuplicateRegistrationError(MessagingError):
    """Raised when a (message type, channel, recipient) triple is registered twice."""

    def __init__(self, recipient: Any, message_type: type, channel: Any) -> None:
        self.recipient = recipient
        self.message_type = message_type
        self.channel = channel
        super().__init__(
            f"{type(recipient).__name__} is already registered for "
            f"{message_type.__name__} on channel {channel!r}. "
            "Unregister it before registering a new handler."
        )


class NoRegisteredHandlerError(MessagingError):
    """Raised when a request completes dispatch without any reply."""


class AlreadyRepliedError(MessagingError):
    """Raised when a reply slot is written after it has been settled."""


class HandlerDispatchError(MessagingError):
    """Raised under the ``collect`` error policy when handlers failed.

    ``errors`` holds every ``(handler, exception)`` pair in invocation order.
    """

    def __init__(self, message_type: type, errors: list[tuple[Callable[..., Any], BaseException]]) -> None:
        self.message_type = message_type
        self.errors = errors
        super().__init__(
            f"{len(errors)} handler(s) failed for {message_type.__name__}: "
            + "; ".join(
                f"{getattr(handler, '__qualname__', repr(handler))}: {exc}"
                for handler, exc in errors
            )
        )
