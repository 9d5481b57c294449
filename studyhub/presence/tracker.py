"""Decaying view of the remote participants typing in one conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import DEFAULT_EXPIRY_MS


LOGGER = logging.getLogger(__name__)


@dataclass
class TypingPeerRecord:
    participant_id: str
    last_seen_ms: int


class PresenceTracker:
    """Keep one record per remote typist and evict records past the expiry window.

    Records are keyed by participant id, so several devices signed in as the
    same identity collapse into one entry. A record's ``last_seen_ms`` only
    ever moves forward: duplicates and late, out-of-order announcements
    cannot push its expiry earlier.
    """

    def __init__(self, local_participant_id: Optional[str], *, expiry_ms: int = DEFAULT_EXPIRY_MS) -> None:
        self._local_participant_id = local_participant_id
        self._expiry_ms = int(expiry_ms)
        self._records: Dict[str, TypingPeerRecord] = {}

    @property
    def expiry_ms(self) -> int:
        return self._expiry_ms

    def on_remote_announcement(self, participant_id: Optional[str], timestamp_ms: Optional[int]) -> bool:
        """Insert or refresh *participant_id*; return ``True`` when it is newly visible."""

        if not participant_id or timestamp_ms is None:
            LOGGER.debug("Dropping malformed typing announcement: %r@%r", participant_id, timestamp_ms)
            return False
        if participant_id == self._local_participant_id:
            return False

        record = self._records.get(participant_id)
        if record is None:
            self._records[participant_id] = TypingPeerRecord(participant_id, int(timestamp_ms))
            return True
        if timestamp_ms > record.last_seen_ms:
            record.last_seen_ms = int(timestamp_ms)
        return False

    def sweep(self, now_ms: int) -> List[str]:
        """Remove stale records and return the ids that were evicted."""

        expired = [
            participant_id
            for participant_id, record in self._records.items()
            if self._is_expired(record, now_ms)
        ]
        for participant_id in expired:
            del self._records[participant_id]
        return expired

    def current_typists(self, now_ms: Optional[int] = None) -> List[str]:
        """Return typists in first-seen order.

        When *now_ms* is given, records already past the window are hidden even
        if no sweep has removed them yet.
        """

        if now_ms is None:
            return list(self._records)
        return [
            participant_id
            for participant_id, record in self._records.items()
            if not self._is_expired(record, now_ms)
        ]

    def last_seen(self, participant_id: str) -> Optional[int]:
        record = self._records.get(participant_id)
        return record.last_seen_ms if record else None

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def _is_expired(self, record: TypingPeerRecord, now_ms: int) -> bool:
        return now_ms - record.last_seen_ms >= self._expiry_ms


__all__ = ["PresenceTracker", "TypingPeerRecord"]
