"""Recipient identity and lifecycle policy.

A recipient is wrapped in a ``RecipientRef`` before it enters the
registry.  Under the strong policy the ref owns the subscriber; under the
weak policy it holds a ``weakref.ref`` and the registry never keeps the
subscriber alive.  Dead refs are not tracked eagerly: the registry purges
them the next time it touches the affected entries.
"""

from __future__ import annotations

import abc
import itertools
import weakref
from enum import Enum
from typing import Any

_key_counter = itertools.count(1)


class ReferencePolicy(str, Enum):
    """How a messenger holds on to its recipients."""

    STRONG = "strong"
    WEAK = "weak"


class RecipientRef(abc.ABC):
    """Opaque handle identifying one subscriber inside a registry.

    ``key`` is drawn from a process-wide counter and is never reused, so a
    dead ref can never be confused with a recipient that later happens to
    get the same ``id()``.
    """

    __slots__ = ("key",)

    def __init__(self) -> None:
        self.key: int = next(_key_counter)

    @abc.abstractmethod
    def resolve(self) -> Any | None:
        """Return the subscriber, or ``None`` once it has been collected."""

    @property
    def is_alive(self) -> bool:
        return self.resolve() is not None

    def refers_to(self, subscriber: Any) -> bool:
        return self.resolve() is subscriber


class StrongRecipientRef(RecipientRef):
    """Owns the subscriber until it is explicitly unregistered."""

    __slots__ = ("_target",)

    def __init__(self, subscriber: Any) -> None:
        super().__init__()
        self._target = subscriber

    def resolve(self) -> Any | None:
        return self._target

    def __repr__(self) -> str:
        return f"StrongRecipientRef(key={self.key}, target={type(self._target).__name__})"


class WeakRecipientRef(RecipientRef):
    """Non-owning back-reference; turns dead once the subscriber is collected."""

    __slots__ = ("_ref", "_type_name")

    def __init__(self, subscriber: Any) -> None:
        try:
            ref = weakref.ref(subscriber)
        except TypeError as exc:
            raise TypeError(
                f"Cannot hold a weak reference to {type(subscriber).__name__!r}. "
                "Use a StrongReferenceMessenger or a recipient type that "
                "supports weak references."
            ) from exc
        super().__init__()
        self._ref = ref
        self._type_name = type(subscriber).__name__

    def resolve(self) -> Any | None:
        return self._ref()

    def __repr__(self) -> str:
        state = "alive" if self.is_alive else "dead"
        return f"WeakRecipientRef(key={self.key}, target={self._type_name}, {state})"


def make_recipient_ref(subscriber: Any, policy: ReferencePolicy) -> RecipientRef:
    """Wrap *subscriber* according to *policy*."""
    if subscriber is None:
        raise TypeError("Recipient must not be None.")
    if policy == ReferencePolicy.WEAK:
        return WeakRecipientRef(subscriber)
    return StrongRecipientRef(subscriber)
