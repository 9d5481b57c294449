"""Typing indicator propagation over a publish/subscribe channel."""

from .announcement import ContextMode, TypingAnnouncement, epoch_ms
from .indicator import format_typing_summary, resolve_display_names
from .session import TypingSession
from .throttle import AnnounceDecision, ThrottledEmitter
from .tracker import PresenceTracker, TypingPeerRecord
from .transport import (
    ChannelTransport,
    InMemoryTransport,
    SubscriptionHandle,
    TransportError,
)

__all__ = [
    "AnnounceDecision",
    "ChannelTransport",
    "ContextMode",
    "InMemoryTransport",
    "PresenceTracker",
    "SubscriptionHandle",
    "ThrottledEmitter",
    "TransportError",
    "TypingAnnouncement",
    "TypingPeerRecord",
    "TypingSession",
    "epoch_ms",
    "format_typing_summary",
    "resolve_display_names",
]
