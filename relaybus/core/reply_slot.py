"""Single-assignment reply slot backing every request message.

State machine::

    PENDING -> REPLIED   (terminal)
    PENDING -> FAILED    (terminal)

Writing a settled slot raises ``AlreadyRepliedError``.  There is no
cancelled state: a slot that has been sent always ends REPLIED or FAILED.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from relaybus.core.errors import AlreadyRepliedError, NoRegisteredHandlerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReplyState(str, Enum):
    """Lifecycle of a reply slot."""

    PENDING = "pending"
    REPLIED = "replied"
    FAILED = "failed"


VALID_TRANSITIONS: dict[ReplyState, set[ReplyState]] = {
    ReplyState.PENDING: {ReplyState.REPLIED, ReplyState.FAILED},
    ReplyState.REPLIED: set(),  # terminal
    ReplyState.FAILED: set(),  # terminal
}


class ReplySlot(Generic[T]):
    """Holds at most one response value.

    The transition out of PENDING is taken under a lock, which gives the
    compare-and-set semantics the slot needs: exactly one writer wins.
    Done-callbacks run after the lock is released, on the writer's thread.
    A failing callback is logged and never reaches the writer.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ReplyState.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[ReplySlot[T]], Any]] = []

    @property
    def state(self) -> ReplyState:
        return self._state

    @property
    def is_pending(self) -> bool:
        return self._state == ReplyState.PENDING

    @property
    def has_value(self) -> bool:
        return self._state == ReplyState.REPLIED

    @property
    def error(self) -> BaseException | None:
        return self._error

    def set_result(self, value: T) -> None:
        """Store the response.

        Raises
        ------
        AlreadyRepliedError
            If the slot has already been replied to or failed.
        """
        with self._lock:
            self._transition(ReplyState.REPLIED)
            self._value = value
            callbacks, self._callbacks = self._callbacks, []
        self._run(callbacks)

    def set_failed(self, error: BaseException) -> bool:
        """Fail a pending slot.  Returns ``False`` if it was already settled."""
        with self._lock:
            if self._state != ReplyState.PENDING:
                return False
            self._transition(ReplyState.FAILED)
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
        self._run(callbacks)
        return True

    def result(self) -> T:
        """Return the response, or raise the failure.

        Raises
        ------
        NoRegisteredHandlerError
            If nothing has replied yet.
        """
        if self._state == ReplyState.REPLIED:
            return self._value  # type: ignore[return-value]
        if self._state == ReplyState.FAILED:
            assert self._error is not None
            raise self._error
        raise NoRegisteredHandlerError("No response has been received for this request.")

    def add_done_callback(self, callback: Callable[[ReplySlot[T]], Any]) -> None:
        """Call *callback* with the slot once it settles (now, if it already has)."""
        with self._lock:
            if self._state == ReplyState.PENDING:
                self._callbacks.append(callback)
                return
        self._run([callback])

    def remove_done_callback(self, callback: Callable[[ReplySlot[T]], Any]) -> bool:
        """Unregister a pending callback.  Returns ``False`` if it was not registered."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
        return True

    def _transition(self, target: ReplyState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise AlreadyRepliedError(
                f"Cannot reply: the request is already {self._state.value}."
            )
        self._state = target

    def _run(self, callbacks: list[Callable[[ReplySlot[T]], Any]]) -> None:
        for callback in callbacks:
            try:
                callback(self)
            except Exception as exc:  # noqa: BLE001
                logger.error("Reply slot callback %r failed: %s", callback, exc)

    def __repr__(self) -> str:
        return f"ReplySlot(state={self._state.value})"
