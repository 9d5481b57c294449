"""Publish/subscribe channel transport contract and an in-process broker."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol

from ..services.events import emit_transport_event


LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], None]


class TransportError(RuntimeError):
    """Raised when the channel transport cannot subscribe or publish."""


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int
    channel: str


class ChannelTransport(Protocol):
    """Protocol describing a broadcast pub/sub backend."""

    def subscribe(self, channel_name: str) -> SubscriptionHandle:
        """Join *channel_name* and return a handle for later calls."""

    def publish(self, handle: SubscriptionHandle, event_name: str, payload: Mapping[str, Any]) -> None:
        """Broadcast *payload* as *event_name* to the handle's channel."""

    def on_event(self, handle: SubscriptionHandle, event_name: str, handler: EventHandler) -> None:
        """Invoke *handler* for every *event_name* delivered on the handle's channel."""

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Leave the channel; further deliveries to *handle* stop."""


@dataclass
class _Subscription:
    handle: SubscriptionHandle
    loop: Optional[asyncio.AbstractEventLoop] = None
    handlers: Dict[str, List[EventHandler]] = field(default_factory=dict)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class InMemoryTransport:
    """Broker fanning broadcasts out to every subscriber of a channel.

    Handlers run on the event loop that was running when their subscription
    was created: synchronously when the publisher shares that loop (or no loop
    is involved), otherwise scheduled onto it with ``call_soon_threadsafe``.
    The sender's own subscription receives its broadcasts too; consumers
    filter self-reflection themselves.
    """

    def __init__(self) -> None:
        self._ids: Iterator[int] = itertools.count(1)
        self._subscriptions: Dict[int, _Subscription] = {}
        self._channels: Dict[str, Dict[int, _Subscription]] = {}
        self._available = True

    @property
    def available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """Simulate an outage (``False``) or recovery (``True``)."""

        self._available = bool(available)
        LOGGER.info("In-memory transport %s", "available" if self._available else "unavailable")

    def subscribe(self, channel_name: str) -> SubscriptionHandle:
        if not channel_name:
            raise TransportError("Channel name must not be empty")
        if not self._available:
            raise TransportError(f"Transport unavailable; cannot subscribe to {channel_name}")
        handle = SubscriptionHandle(id=next(self._ids), channel=channel_name)
        subscription = _Subscription(handle=handle, loop=_running_loop())
        self._subscriptions[handle.id] = subscription
        self._channels.setdefault(channel_name, {})[handle.id] = subscription
        emit_transport_event("subscribe", channel=channel_name, payload={"handle": handle.id})
        return handle

    def on_event(self, handle: SubscriptionHandle, event_name: str, handler: EventHandler) -> None:
        subscription = self._require(handle)
        subscription.handlers.setdefault(event_name, []).append(handler)

    def publish(self, handle: SubscriptionHandle, event_name: str, payload: Mapping[str, Any]) -> None:
        self._require(handle)
        if not self._available:
            raise TransportError(f"Transport unavailable; cannot publish to {handle.channel}")
        recipients = list(self._channels.get(handle.channel, {}).values())
        emit_transport_event(
            "publish",
            channel=handle.channel,
            payload={"event": event_name, "recipients": len(recipients)},
        )
        publisher_loop = _running_loop()
        for subscription in recipients:
            target_loop = subscription.loop
            if target_loop is None or target_loop is publisher_loop:
                self._deliver(subscription, event_name, payload)
            elif not target_loop.is_closed():
                target_loop.call_soon_threadsafe(
                    self._deliver, subscription, event_name, dict(payload)
                )

    def _deliver(self, subscription: _Subscription, event_name: str, payload: Mapping[str, Any]) -> None:
        if subscription.handle.id not in self._subscriptions:
            return
        for handler in list(subscription.handlers.get(event_name, ())):
            try:
                handler(dict(payload))
            except Exception:  # noqa: BLE001 - one subscriber must not break the fan-out
                LOGGER.exception(
                    "Handler for %s on %s raised an error", event_name, subscription.handle.channel
                )

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        subscription = self._subscriptions.pop(handle.id, None)
        if subscription is None:
            return
        members = self._channels.get(handle.channel)
        if members is not None:
            members.pop(handle.id, None)
            if not members:
                del self._channels[handle.channel]
        emit_transport_event("unsubscribe", channel=handle.channel, payload={"handle": handle.id})

    def subscriber_count(self, channel_name: str) -> int:
        return len(self._channels.get(channel_name, {}))

    def _require(self, handle: SubscriptionHandle) -> _Subscription:
        subscription = self._subscriptions.get(handle.id)
        if subscription is None:
            raise TransportError(f"Unknown or closed subscription {handle.id} on {handle.channel}")
        return subscription


__all__ = [
    "ChannelTransport",
    "EventHandler",
    "InMemoryTransport",
    "SubscriptionHandle",
    "TransportError",
]
