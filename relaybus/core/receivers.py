"""Declarative recipients — mark methods with ``@receives`` and register them in one call.

Examples
--------
>>> class Ping: ...
>>> class Listener:
...     @receives(Ping)
...     def on_ping(self, message: Ping) -> None:
...         pass
>>> [(t.__name__, f.__name__) for t, f in find_receivers(Listener())]
[('Ping', 'on_ping')]
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

_RECEIVES_ATTR = "__relaybus_receives__"


def receives(*message_types: type) -> Callable[[F], F]:
    """Mark a method as the handler for one or more message types."""
    if not message_types:
        raise TypeError("receives() needs at least one message type.")
    for message_type in message_types:
        if not isinstance(message_type, type):
            raise TypeError(f"receives() expects classes, got {message_type!r}.")

    def decorator(func: F) -> F:
        existing: tuple[type, ...] = getattr(func, _RECEIVES_ATTR, ())
        setattr(func, _RECEIVES_ATTR, existing + tuple(message_types))
        return func

    return decorator


def find_receivers(recipient: Any) -> list[tuple[type, Callable[[Any, Any], Any]]]:
    """Return ``(message_type, function)`` pairs declared on the recipient's class.

    The functions are unbound, so they can be stored without keeping the
    recipient alive and are called as ``function(recipient, message)``.
    Methods are walked in MRO order; an override hides the base method.
    """
    found: list[tuple[type, Callable[[Any, Any], Any]]] = []
    seen_names: set[str] = set()
    seen_types: set[type] = set()
    for klass in type(recipient).__mro__:
        for name, member in vars(klass).items():
            if name in seen_names:
                continue
            seen_names.add(name)
            for message_type in getattr(member, _RECEIVES_ATTR, ()):
                if message_type in seen_types:
                    raise TypeError(
                        f"{type(recipient).__name__} declares more than one "
                        f"receiver for {message_type.__name__}."
                    )
                seen_types.add(message_type)
                found.append((message_type, member))
    return found
