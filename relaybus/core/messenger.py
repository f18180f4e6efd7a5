"""Messenger — registration front-end and dispatch engine.

A ``Messenger`` owns one ``Registry`` and is the unit of isolation: any
number of instances may coexist without cross-talk.  Dispatch always works
on a snapshot copied out of the registry, then invokes handlers with no
lock held, on the caller's thread, in registration order.

``StrongReferenceMessenger`` and ``WeakReferenceMessenger`` are the two
lifecycle configurations of the same class.  Each also has a lazily
created process-wide ``default()`` instance.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, Hashable, TypeVar

from relaybus.config import ErrorPolicy, settings
from relaybus.core.errors import HandlerDispatchError, NoRegisteredHandlerError
from relaybus.core.receivers import find_receivers
from relaybus.core.recipients import ReferencePolicy
from relaybus.core.registry import ALL_CHANNELS, Handler, Registry
from relaybus.core.reply_slot import ReplySlot
from relaybus.models.messages import (
    AsyncCollectionRequestMessage,
    AsyncRequestMessage,
    CollectionRequestMessage,
    RequestMessage,
    handler_position,
)
from relaybus.models.registry import RegistryStats

logger = logging.getLogger(__name__)

M = TypeVar("M")

_defaults: dict[type, Messenger] = {}
_defaults_lock = threading.Lock()


def _unbind(recipient: Any, handler: Handler) -> Handler:
    # A method bound to the recipient would keep a weak recipient alive;
    # store the function and pass the recipient as ``self`` at dispatch.
    if inspect.ismethod(handler) and handler.__self__ is recipient:
        return handler.__func__  # type: ignore[return-value]
    return handler


def _no_handler_error(message: Any, channel: Hashable) -> NoRegisteredHandlerError:
    return NoRegisteredHandlerError(
        f"No handler replied to {type(message).__name__} on channel {channel!r}."
    )


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


def _wake_soon(loop: asyncio.AbstractEventLoop, waiter: asyncio.Future[None]) -> None:
    # The slot may settle on another thread after the loop has closed.
    if loop.is_closed():
        return
    try:
        loop.call_soon_threadsafe(_wake, waiter)
    except RuntimeError:
        logger.debug("Event loop closed before a settled request could be observed")


class Messenger:
    """Type-keyed publish/subscribe messenger.

    Parameters
    ----------
    policy:
        Recipient lifecycle policy, fixed for the lifetime of the instance.
    error_policy:
        Handler failure policy for broadcasts.  Defaults to
        ``settings.error_policy``.

    Examples
    --------
    >>> class Greeting:
    ...     def __init__(self, text): self.text = text
    >>> class Listener:
    ...     def __init__(self): self.seen = []
    >>> messenger = Messenger(ReferencePolicy.STRONG)
    >>> listener = Listener()
    >>> messenger.register(listener, Greeting, lambda r, m: r.seen.append(m.text))
    >>> _ = messenger.send(Greeting("hello"))
    >>> listener.seen
    ['hello']
    """

    def __init__(
        self,
        policy: ReferencePolicy = ReferencePolicy.STRONG,
        *,
        error_policy: ErrorPolicy | str | None = None,
    ) -> None:
        self._registry = Registry(ReferencePolicy(policy))
        self._error_policy = (
            ErrorPolicy(error_policy) if error_policy is not None else settings.error_policy
        )

    @classmethod
    def default(cls: type[M]) -> M:
        """Return the process-wide instance of this messenger class.

        Created on first use and never torn down.
        """
        with _defaults_lock:
            instance = _defaults.get(cls)
            if instance is None:
                instance = cls()
                _defaults[cls] = instance  # type: ignore[assignment]
                logger.debug("Created default %s", cls.__name__)
            return instance  # type: ignore[return-value]

    @property
    def policy(self) -> ReferencePolicy:
        return self._registry.policy

    @property
    def error_policy(self) -> ErrorPolicy:
        return self._error_policy

    @property
    def registry(self) -> Registry:
        return self._registry

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        recipient: Any,
        message_type: type,
        handler: Handler,
        channel: Hashable = None,
    ) -> None:
        """Register *handler* for *recipient* on (*message_type*, *channel*).

        The handler is called as ``handler(recipient, message)``.  A method
        bound to the recipient itself is called as ``method(message)``.

        Raises
        ------
        DuplicateRegistrationError
            If the recipient already has a handler for this type and channel.
        """
        self._registry.register(recipient, message_type, _unbind(recipient, handler), channel)

    def register_all(self, recipient: Any, channel: Hashable = None) -> int:
        """Register every ``@receives`` method declared on the recipient's class.

        All-or-nothing: if one registration fails, the ones already made by
        this call are removed before the error propagates.  Returns the
        number of handlers registered.
        """
        receivers = find_receivers(recipient)
        if not receivers:
            raise TypeError(
                f"{type(recipient).__name__} declares no @receives methods."
            )
        done: list[type] = []
        try:
            for message_type, function in receivers:
                self._registry.register(recipient, message_type, function, channel)
                done.append(message_type)
        except Exception:
            for message_type in done:
                self._registry.unregister(recipient, message_type, channel)
            raise
        return len(done)

    def unregister(
        self,
        recipient: Any,
        message_type: type | None = None,
        channel: Any = ALL_CHANNELS,
    ) -> int:
        """Remove the recipient's handlers; omitted filters mean "all".

        Idempotent.  Returns how many handlers were removed.
        """
        return self._registry.unregister(recipient, message_type, channel)

    def unregister_all(self, recipient: Any, channel: Any = ALL_CHANNELS) -> int:
        """Remove every handler of *recipient*, optionally only on *channel*."""
        return self._registry.unregister(recipient, None, channel)

    def is_registered(self, recipient: Any, message_type: type, channel: Hashable = None) -> bool:
        return self._registry.is_registered(recipient, message_type, channel)

    def cleanup(self) -> int:
        """Purge recipients that have been garbage collected."""
        return self._registry.cleanup()

    def reset(self) -> None:
        """Unregister every recipient."""
        self._registry.reset()

    def get_stats(self) -> RegistryStats:
        return self._registry.get_stats()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(self, message: M, channel: Hashable = None) -> M:
        """Broadcast *message* to every handler registered for its type.

        Returns the message, so request-shaped messages can be inspected
        after dispatch.  Sending to no handlers is a silent no-op.
        """
        handlers = self._registry.snapshot(type(message), channel)
        self._invoke(message, handlers)
        return message

    def request(self, message: Any, channel: Hashable = None) -> Any:
        """Send a request and return its single response.

        For a ``RequestMessage`` the value is returned directly.  For an
        ``AsyncRequestMessage`` an ``asyncio.Task`` resolving to the value is
        returned; this must be called with an event loop running.

        Raises
        ------
        NoRegisteredHandlerError
            If no live handler is registered, or none of them replied.
        AlreadyRepliedError
            If a second handler tried to reply (propagated from that handler).
        """
        if isinstance(message, AsyncRequestMessage):
            return self._request_async(message, channel)
        if not isinstance(message, RequestMessage):
            raise TypeError(
                f"request() expects a RequestMessage or AsyncRequestMessage, "
                f"got {type(message).__name__}."
            )
        slot = message.reply_slot
        handlers = self._registry.snapshot(type(message), channel)
        if not handlers:
            error = _no_handler_error(message, channel)
            slot.set_failed(error)
            raise error

        self._invoke_for_reply(message, slot, handlers)

        error = _no_handler_error(message, channel)
        if slot.set_failed(error):
            raise error
        return slot.result()

    def request_all(self, message: Any, channel: Hashable = None) -> Any:
        """Send a collection request and return every response in handler order.

        For an ``AsyncCollectionRequestMessage`` an ``asyncio.Task`` is
        returned that resolves once every handler's suspending work is done.
        """
        if isinstance(message, AsyncCollectionRequestMessage):
            return self._request_all_async(message, channel)
        if not isinstance(message, CollectionRequestMessage):
            raise TypeError(
                f"request_all() expects a CollectionRequestMessage or "
                f"AsyncCollectionRequestMessage, got {type(message).__name__}."
            )
        handlers = self._registry.snapshot(type(message), channel)
        self._invoke(message, handlers)
        return message.responses

    # ------------------------------------------------------------------
    # Asynchronous requests
    # ------------------------------------------------------------------

    def _request_async(self, message: AsyncRequestMessage[Any], channel: Hashable) -> asyncio.Task[Any]:
        loop = asyncio.get_running_loop()
        slot = message.reply_slot
        handlers = self._registry.snapshot(type(message), channel)
        if not handlers:
            error = _no_handler_error(message, channel)
            slot.set_failed(error)
            raise error

        tasks = self._invoke_for_reply(
            message,
            slot,
            handlers,
            schedule=True,
            on_task=lambda t: t.add_done_callback(
                lambda done: self._observe_handler_task(done, message)
            ),
        )
        return loop.create_task(self._await_response(message, channel, tasks))

    async def _await_response(
        self,
        message: AsyncRequestMessage[Any],
        channel: Hashable,
        tasks: list[asyncio.Future[Any]],
    ) -> Any:
        loop = asyncio.get_running_loop()
        slot = message.reply_slot
        settled: asyncio.Future[None] = loop.create_future()

        def on_settled(_slot: ReplySlot[Any]) -> None:
            _wake_soon(loop, settled)

        slot.add_done_callback(on_settled)
        outstanding: set[asyncio.Future[Any]] = set(tasks)
        try:
            while slot.is_pending:
                if not outstanding:
                    slot.set_failed(_no_handler_error(message, channel))
                    break
                done, outstanding = await asyncio.wait(
                    outstanding | {settled}, return_when=asyncio.FIRST_COMPLETED
                )
                outstanding.discard(settled)
                for task in done:
                    if task is not settled and not task.cancelled() and task.exception() is not None:
                        slot.set_failed(task.exception())  # type: ignore[arg-type]
        finally:
            # a late reply on another thread must never touch this loop
            slot.remove_done_callback(on_settled)

        response = slot.result()
        if inspect.isawaitable(response):
            response = await response
        return response

    def _observe_handler_task(self, task: asyncio.Future[Any], message: Any) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        slot: ReplySlot[Any] = message.reply_slot
        if not slot.set_failed(exc) and slot.error is not exc:
            logger.warning(
                "Handler for %s failed after the request was settled: %r",
                type(message).__name__,
                exc,
            )

    def _request_all_async(
        self, message: AsyncCollectionRequestMessage[Any], channel: Hashable
    ) -> asyncio.Task[list[Any]]:
        loop = asyncio.get_running_loop()
        handlers = self._registry.snapshot(type(message), channel)
        tasks = self._invoke(message, handlers, schedule=True)
        return loop.create_task(self._gather_responses(message, tasks))

    @staticmethod
    async def _gather_responses(
        message: AsyncCollectionRequestMessage[Any], tasks: list[asyncio.Future[Any]]
    ) -> list[Any]:
        if tasks:
            await asyncio.gather(*tasks)
        return await message.get_responses()

    # ------------------------------------------------------------------
    # Handler invocation
    # ------------------------------------------------------------------

    def _invoke_for_reply(
        self,
        message: Any,
        slot: ReplySlot[Any],
        handlers: list[tuple[Any, Handler]],
        *,
        schedule: bool = False,
        on_task: Callable[[asyncio.Future[Any]], Any] | None = None,
    ) -> list[asyncio.Future[Any]]:
        try:
            return self._invoke(message, handlers, schedule=schedule, on_task=on_task)
        except Exception as exc:
            slot.set_failed(exc)
            raise

    def _invoke(
        self,
        message: Any,
        handlers: list[tuple[Any, Handler]],
        *,
        schedule: bool = False,
        on_task: Callable[[asyncio.Future[Any]], Any] | None = None,
    ) -> list[asyncio.Future[Any]]:
        """Call each handler in snapshot order.

        With ``schedule=True`` awaitables returned by handlers are wrapped in
        tasks (inheriting the handler position) and returned; otherwise an
        awaitable is a ``TypeError``.  *on_task* sees each task as soon as it
        is created, so tasks scheduled before a failing handler are not lost.
        """
        tasks: list[asyncio.Future[Any]] = []
        errors: list[tuple[Callable[..., Any], BaseException]] = []
        for position, (recipient, handler) in enumerate(handlers):
            try:
                with handler_position(position):
                    result = handler(recipient, message)
                    if inspect.isawaitable(result):
                        if not schedule:
                            if inspect.iscoroutine(result):
                                result.close()
                            raise TypeError(
                                f"Handler {getattr(handler, '__qualname__', handler)!r} "
                                f"returned an awaitable for {type(message).__name__}; "
                                "coroutine handlers need an asynchronous request message."
                            )
                        task = asyncio.ensure_future(result)
                        tasks.append(task)
                        if on_task is not None:
                            on_task(task)
            except Exception as exc:
                if self._error_policy == ErrorPolicy.FAIL_FAST:
                    raise
                logger.error(
                    "Handler %s failed for %s: %r",
                    getattr(handler, "__qualname__", handler),
                    type(message).__name__,
                    exc,
                )
                errors.append((handler, exc))

        if errors:
            raise HandlerDispatchError(type(message), errors)
        return tasks

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(policy={self.policy.value}, "
            f"error_policy={self._error_policy.value})"
        )


class StrongReferenceMessenger(Messenger):
    """Messenger that keeps recipients alive until they are unregistered."""

    def __init__(self, *, error_policy: ErrorPolicy | str | None = None) -> None:
        super().__init__(ReferencePolicy.STRONG, error_policy=error_policy)


class WeakReferenceMessenger(Messenger):
    """Messenger that never keeps recipients alive.

    Recipients must support weak references.  Once a recipient is
    collected its handlers stop receiving messages and are purged the next
    time the registry is touched.
    """

    def __init__(self, *, error_policy: ErrorPolicy | str | None = None) -> None:
        super().__init__(ReferencePolicy.WEAK, error_policy=error_policy)


def get_default_messenger() -> Messenger:
    """Return the process-wide messenger for ``settings.default_policy``."""
    if settings.default_policy == ReferencePolicy.STRONG:
        return StrongReferenceMessenger.default()
    return WeakReferenceMessenger.default()
