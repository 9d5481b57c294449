"""Wire representation of a typing announcement."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ContextMode(str, Enum):
    DIRECT = "direct"
    GROUP = "group"

    @classmethod
    def coerce(cls, value: Any) -> "ContextMode":
        """Return the matching mode, falling back to :attr:`DIRECT` for unknown input."""

        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.DIRECT


def epoch_ms() -> int:
    """Return the current wall-clock time in integer milliseconds."""

    return int(time.time() * 1000)


@dataclass(frozen=True)
class TypingAnnouncement:
    """A single "this participant is typing now" broadcast."""

    participant_id: str
    timestamp_ms: int
    context_mode: ContextMode = ContextMode.DIRECT

    def to_payload(self) -> Dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "timestampMs": self.timestamp_ms,
            "contextMode": self.context_mode.value,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TypingAnnouncement"]:
        """Parse *payload*, returning ``None`` when it is malformed.

        Older clients send ``userId``/``ts``/``mode``; those keys are accepted
        when the current ones are absent.
        """

        if not isinstance(payload, Mapping):
            return None
        participant_id = _pick(payload, "participantId", "userId")
        timestamp = _pick(payload, "timestampMs", "ts")
        if not isinstance(participant_id, str) or not participant_id.strip():
            return None
        timestamp_ms = _coerce_timestamp(timestamp)
        if timestamp_ms is None:
            return None
        mode = ContextMode.coerce(_pick(payload, "contextMode", "mode"))
        return cls(participant_id=participant_id.strip(), timestamp_ms=timestamp_ms, context_mode=mode)


def _pick(payload: Mapping[str, Any], key: str, legacy_key: str) -> Any:
    value = payload.get(key)
    if value is None:
        value = payload.get(legacy_key)
    return value


def _coerce_timestamp(value: Any) -> Optional[int]:
    # bool is an int subclass; a literal true/false is never a timestamp.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    return None


__all__ = ["ContextMode", "TypingAnnouncement", "epoch_ms"]
