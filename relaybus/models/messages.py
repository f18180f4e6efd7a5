"""Request message shapes.

Broadcast messages need no base class: any instance can be sent, and its
exact type is the dispatch key.  Request messages subclass one of the
classes below, which attach the reply mechanism the dispatcher observes.

The reply state is attached in ``__new__`` so subclasses may define their
own ``__init__`` (or be dataclasses) without calling ``super().__init__()``.

Examples
--------
>>> class Ping(RequestMessage[str]):
...     def __init__(self, text: str) -> None:
...         self.text = text
>>> ping = Ping("hello")
>>> ping.reply("hi")
>>> ping.response
'hi'
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Generic, Iterator, TypeVar, Union

from relaybus.core.errors import AlreadyRepliedError
from relaybus.core.reply_slot import ReplySlot

T = TypeVar("T")

# Snapshot position of the handler currently being invoked.  Set by the
# dispatcher around each invocation; tasks created for coroutine handlers
# inherit it, so replies made after a suspension keep handler order.
_handler_position: ContextVar[int] = ContextVar("relaybus_handler_position", default=sys.maxsize)


def current_handler_position() -> int:
    return _handler_position.get()


@contextmanager
def handler_position(position: int) -> Iterator[None]:
    """Mark replies made inside the block as coming from handler *position*."""
    token = _handler_position.set(position)
    try:
        yield
    finally:
        _handler_position.reset(token)


def _as_future(response: Any) -> Any:
    if inspect.isawaitable(response):
        return asyncio.ensure_future(response)
    return response


class RequestMessage(Generic[T]):
    """A request answered synchronously by exactly one handler."""

    _reply_slot: ReplySlot[T]

    def __new__(cls, *args: Any, **kwargs: Any) -> Any:
        self = super().__new__(cls)
        object.__setattr__(self, "_reply_slot", ReplySlot())
        return self

    @property
    def reply_slot(self) -> ReplySlot[T]:
        return self._reply_slot

    @property
    def has_received_response(self) -> bool:
        return self._reply_slot.has_value

    @property
    def response(self) -> T:
        """The reply value.

        Raises
        ------
        NoRegisteredHandlerError
            If no handler has replied.
        """
        return self._reply_slot.result()

    def reply(self, response: T) -> None:
        """Set the response.  A second reply raises ``AlreadyRepliedError``."""
        self._reply_slot.set_result(response)


class AsyncRequestMessage(Generic[T]):
    """A request whose single response may be produced after suspending work.

    ``reply`` accepts a value or an awaitable resolving to one.  Awaitables
    are wrapped in a task immediately, so the reply keeps running even if
    the caller abandons the request.  Must be called on a thread with a
    running event loop when given an awaitable.
    """

    _reply_slot: ReplySlot[Any]

    def __new__(cls, *args: Any, **kwargs: Any) -> Any:
        self = super().__new__(cls)
        object.__setattr__(self, "_reply_slot", ReplySlot())
        return self

    @property
    def reply_slot(self) -> ReplySlot[Any]:
        return self._reply_slot

    @property
    def has_received_response(self) -> bool:
        return self._reply_slot.has_value

    def reply(self, response: Union[T, Awaitable[T]]) -> None:
        """Set the response (or the awaitable producing it)."""
        if not self._reply_slot.is_pending:
            raise AlreadyRepliedError(
                f"Cannot reply: the request is already {self._reply_slot.state.value}."
            )
        pending = _as_future(response)
        try:
            self._reply_slot.set_result(pending)
        except Exception:
            if isinstance(pending, asyncio.Future):
                pending.cancel()
            raise


class _ReplyCollector:
    """Thread-safe accumulator of replies ordered by handler position."""

    _replies: list[tuple[int, int, Any]]

    def __new__(cls, *args: Any, **kwargs: Any) -> Any:
        self = super().__new__(cls)
        object.__setattr__(self, "_replies", [])
        object.__setattr__(self, "_replies_lock", threading.Lock())
        object.__setattr__(self, "_sequence", itertools.count())
        return self

    def _append(self, response: Any) -> None:
        with self._replies_lock:  # type: ignore[attr-defined]
            self._replies.append(
                (current_handler_position(), next(self._sequence), response)  # type: ignore[attr-defined]
            )

    def _ordered(self) -> list[Any]:
        with self._replies_lock:  # type: ignore[attr-defined]
            replies = sorted(self._replies, key=lambda r: (r[0], r[1]))
        return [response for _, _, response in replies]


class CollectionRequestMessage(_ReplyCollector, Generic[T]):
    """A request that gathers zero or more responses from every handler."""

    @property
    def responses(self) -> list[T]:
        """Replies in handler invocation order."""
        return self._ordered()

    def reply(self, response: T) -> None:
        self._append(response)


class AsyncCollectionRequestMessage(_ReplyCollector, Generic[T]):
    """Collection request whose replies may be awaitables.

    Awaitables are wrapped in tasks on reply; the dispatcher resolves them
    in handler order once every handler has finished.
    """

    def reply(self, response: Union[T, Awaitable[T]]) -> None:
        self._append(_as_future(response))

    async def get_responses(self) -> list[T]:
        """Await every pending reply and return the values in handler order."""
        results: list[T] = []
        for response in self._ordered():
            if inspect.isawaitable(response):
                response = await response
            results.append(response)
        return results
