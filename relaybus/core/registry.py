"""Subscription registry — (message type, channel) -> ordered handler entries.

All structure mutations and every snapshot are serialized by a single
``threading.Lock`` owned by the registry instance.  The lock only ever
covers dictionary work: ``snapshot`` copies the matching entries and
returns them, so handler code never runs while it is held and handlers
are free to register or unregister during their own invocation.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Any, Callable, Hashable

from relaybus.core.errors import DuplicateRegistrationError
from relaybus.core.recipients import RecipientRef, ReferencePolicy, make_recipient_ref
from relaybus.models.registry import RegistryStats, Subscription

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Any], Any]
RouteKey = tuple[type, Hashable]


class _AllChannels:
    """Sentinel meaning "every channel" in unregister filters."""

    _instance: _AllChannels | None = None

    def __new__(cls) -> _AllChannels:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ALL_CHANNELS"


ALL_CHANNELS: Any = _AllChannels()


def _check_channel(channel: Any) -> None:
    if channel is ALL_CHANNELS:
        raise TypeError("ALL_CHANNELS is only valid as an unregister filter.")
    try:
        hash(channel)
    except TypeError as exc:
        raise TypeError(
            f"Channel tokens must be hashable, got {type(channel).__name__!r}."
        ) from exc


class Registry:
    """Maps (message type, channel) to subscriptions in registration order.

    Parameters
    ----------
    policy:
        Lifecycle policy applied to every recipient registered here.

    Examples
    --------
    >>> class Ping: ...
    >>> class Listener: ...
    >>> registry = Registry(ReferencePolicy.STRONG)
    >>> listener = Listener()
    >>> registry.register(listener, Ping, lambda r, m: None)
    >>> registry.is_registered(listener, Ping)
    True
    """

    def __init__(self, policy: ReferencePolicy) -> None:
        self._policy = policy
        self._lock = threading.Lock()
        # id(subscriber) -> ref; the ref is checked with ``refers_to`` on
        # lookup because ids are recycled once a subscriber is collected.
        self._recipients: dict[int, RecipientRef] = {}
        self._subscriber_ids: dict[int, int] = {}
        # (message type, channel) -> {ref.key -> subscription}, insertion ordered
        self._routes: dict[RouteKey, dict[int, Subscription]] = {}
        # ref.key -> routes the recipient appears in
        self._routes_by_recipient: dict[int, set[RouteKey]] = {}

    @property
    def policy(self) -> ReferencePolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def register(
        self,
        recipient: Any,
        message_type: type,
        handler: Handler,
        channel: Hashable = None,
    ) -> None:
        """Add a handler for *recipient* on (*message_type*, *channel*).

        Raises
        ------
        DuplicateRegistrationError
            If the triple already has a live entry.  The registry is left
            unchanged.
        TypeError
            If *message_type* is not a class, *handler* is not callable, the
            channel is not hashable, or the recipient cannot be held under
            the weak policy.
        """
        if not isinstance(message_type, type):
            raise TypeError(f"message_type must be a class, got {message_type!r}.")
        if not callable(handler):
            raise TypeError(f"handler must be callable, got {handler!r}.")
        _check_channel(channel)

        route: RouteKey = (message_type, channel)
        with self._lock:
            ref = self._lookup(recipient)
            created = ref is None
            if ref is None:
                ref = make_recipient_ref(recipient, self._policy)

            entries = self._routes.get(route)
            if entries is not None:
                self._purge_dead(entries)
                if ref.key in entries:
                    raise DuplicateRegistrationError(recipient, message_type, channel)

            subscription = Subscription(
                message_type=message_type,
                channel=channel,
                recipient=ref,
                handler=handler,
            )
            if created:
                self._recipients[id(recipient)] = ref
                self._subscriber_ids[ref.key] = id(recipient)
            self._routes.setdefault(route, {})[ref.key] = subscription
            self._routes_by_recipient.setdefault(ref.key, set()).add(route)

        logger.debug(
            "Registered %s for %s on channel %r",
            type(recipient).__name__,
            message_type.__name__,
            channel,
        )

    def unregister(
        self,
        recipient: Any,
        message_type: type | None = None,
        channel: Any = ALL_CHANNELS,
    ) -> int:
        """Remove the recipient's entries matching the given filters.

        Omitted filters mean "all".  Removing entries that do not exist is a
        no-op.  Returns the number of entries removed.
        """
        with self._lock:
            ref = self._lookup(recipient)
            if ref is None:
                return 0
            routes = self._routes_by_recipient.get(ref.key, set())
            matching = [
                route
                for route in routes
                if (message_type is None or route[0] is message_type)
                and (channel is ALL_CHANNELS or route[1] == channel)
            ]
            for route in matching:
                self._remove_entry(ref, route)

        if matching:
            logger.debug(
                "Unregistered %s from %d route(s)", type(recipient).__name__, len(matching)
            )
        return len(matching)

    def cleanup(self) -> int:
        """Purge every dead recipient and its entries.  Returns the count purged."""
        with self._lock:
            dead = [ref for ref in self._recipients.values() if not ref.is_alive]
            for ref in dead:
                self._forget(ref)
        if dead:
            logger.debug("Cleanup purged %d dead recipient(s)", len(dead))
        return len(dead)

    def reset(self) -> None:
        """Drop every registration."""
        with self._lock:
            self._recipients.clear()
            self._subscriber_ids.clear()
            self._routes.clear()
            self._routes_by_recipient.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_registered(self, recipient: Any, message_type: type, channel: Hashable = None) -> bool:
        """Return ``True`` only if a live entry exists for the triple."""
        _check_channel(channel)
        with self._lock:
            ref = self._lookup(recipient)
            if ref is None:
                return False
            entries = self._routes.get((message_type, channel))
            return entries is not None and ref.key in entries

    def snapshot(self, message_type: type, channel: Hashable = None) -> list[tuple[Any, Handler]]:
        """Return a copy of the live ``(recipient, handler)`` pairs for a route.

        Pairs come back in registration order.  Recipients are resolved to
        strong references here, so a weak recipient that is alive when the
        snapshot is taken stays alive for the whole dispatch.  Dead entries
        are purged as a side effect.
        """
        _check_channel(channel)
        route: RouteKey = (message_type, channel)
        with self._lock:
            entries = self._routes.get(route)
            if not entries:
                return []
            pairs: list[tuple[Any, Handler]] = []
            dead: list[RecipientRef] = []
            for subscription in entries.values():
                target = subscription.recipient.resolve()
                if target is None:
                    dead.append(subscription.recipient)
                else:
                    pairs.append((target, subscription.handler))
            for ref in dead:
                self._forget(ref)
        if dead:
            logger.debug(
                "Purged %d dead recipient(s) while dispatching %s",
                len(dead),
                message_type.__name__,
            )
        return pairs

    def get_stats(self) -> RegistryStats:
        """Return counts of live recipients and subscriptions."""
        with self._lock:
            by_type: Counter[str] = Counter()
            channels: set[Hashable] = set()
            total = 0
            for (message_type, channel), entries in self._routes.items():
                live = sum(1 for s in entries.values() if s.is_alive)
                if live:
                    by_type[message_type.__name__] += live
                    channels.add(channel)
                    total += live
            recipients = sum(1 for ref in self._recipients.values() if ref.is_alive)
        return RegistryStats(
            recipients=recipients,
            subscriptions=total,
            channels=len(channels),
            by_message_type=dict(by_type),
        )

    def __len__(self) -> int:
        return self.get_stats().subscriptions

    def __repr__(self) -> str:
        return f"Registry(policy={self._policy.value}, routes={len(self._routes)})"

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _lookup(self, recipient: Any) -> RecipientRef | None:
        ref = self._recipients.get(id(recipient))
        if ref is None:
            return None
        if not ref.refers_to(recipient):
            # The old subscriber died and its id was recycled.
            self._forget(ref)
            return None
        return ref

    def _purge_dead(self, entries: dict[int, Subscription]) -> None:
        for subscription in [s for s in entries.values() if not s.is_alive]:
            self._forget(subscription.recipient)

    def _forget(self, ref: RecipientRef) -> None:
        for route in list(self._routes_by_recipient.get(ref.key, ())):
            self._remove_entry(ref, route)
        self._drop_recipient(ref)

    def _remove_entry(self, ref: RecipientRef, route: RouteKey) -> None:
        entries = self._routes.get(route)
        if entries is not None:
            entries.pop(ref.key, None)
            if not entries:
                del self._routes[route]
        routes = self._routes_by_recipient.get(ref.key)
        if routes is not None:
            routes.discard(route)
            if not routes:
                self._drop_recipient(ref)

    def _drop_recipient(self, ref: RecipientRef) -> None:
        self._routes_by_recipient.pop(ref.key, None)
        subscriber_id = self._subscriber_ids.pop(ref.key, None)
        if subscriber_id is not None and self._recipients.get(subscriber_id) is ref:
            del self._recipients[subscriber_id]
