"""Outbound rate limiting for local typing announcements."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from ..config import DEFAULT_THROTTLE_MS


class AnnounceDecision(str, Enum):
    SEND_NOW = "send_now"
    SKIP = "skip"


class ThrottledEmitter:
    """Decide whether a local typing signal should be published.

    The emitter only holds the time of the last accepted announcement. The
    caller publishes on :attr:`AnnounceDecision.SEND_NOW`.
    """

    def __init__(self, *, throttle_ms: int = DEFAULT_THROTTLE_MS) -> None:
        self._throttle_ms = int(throttle_ms)
        self._last_sent_ms: Optional[int] = None

    @property
    def throttle_ms(self) -> int:
        return self._throttle_ms

    @property
    def last_sent_ms(self) -> Optional[int]:
        return self._last_sent_ms

    def request_announce(self, now_ms: int) -> AnnounceDecision:
        if self._last_sent_ms is not None and now_ms - self._last_sent_ms < self._throttle_ms:
            return AnnounceDecision.SKIP
        self._last_sent_ms = int(now_ms)
        return AnnounceDecision.SEND_NOW

    def reset(self) -> None:
        self._last_sent_ms = None


__all__ = ["AnnounceDecision", "ThrottledEmitter"]
