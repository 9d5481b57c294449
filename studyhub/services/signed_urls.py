"""Cache for signed attachment URLs with an injected clock."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


LOGGER = logging.getLogger(__name__)

Signer = Callable[[str, str, int], str]

DEFAULT_LIFETIME_SECONDS = 3600
DEFAULT_FRESHNESS_THRESHOLD_SECONDS = 10


class SignedUrlError(RuntimeError):
    """Raised when no candidate path could be signed."""


@dataclass(frozen=True)
class CacheEntry:
    url: str
    expires_at_ms: int


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _strip_leading_slashes(path: str) -> str:
    return path.lstrip("/")


def candidate_paths(object_path: str) -> List[str]:
    """Return the storage paths an attachment may live under, most likely first."""

    trimmed = _strip_leading_slashes(object_path.strip())
    normalized = trimmed[len("uploads/"):] if trimmed.startswith("uploads/") else trimmed
    candidates = [normalized, trimmed]
    if not normalized.startswith("uploads/"):
        candidates.append(f"uploads/{normalized}")
    if not normalized.startswith("public/uploads/"):
        candidates.append(f"public/uploads/{normalized}")
    ordered: List[str] = []
    for candidate in candidates:
        cleaned = _strip_leading_slashes(candidate)
        if cleaned not in ordered:
            ordered.append(cleaned)
    return ordered


class SignedUrlCache:
    """Memoise signed URLs per ``bucket:path`` until they are close to expiry.

    *signer* receives ``(bucket, path, lifetime_seconds)`` and returns the URL;
    any exception it raises marks that candidate as failed.
    """

    def __init__(
        self,
        signer: Signer,
        *,
        clock: Callable[[], int] = _wall_clock_ms,
        lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
        freshness_threshold_seconds: int = DEFAULT_FRESHNESS_THRESHOLD_SECONDS,
    ) -> None:
        self._signer = signer
        self._clock = clock
        self._lifetime_seconds = int(lifetime_seconds)
        self._threshold_ms = int(freshness_threshold_seconds) * 1000
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, bucket: str, object_path: str, *, force: bool = False) -> str:
        now_ms = self._clock()
        candidates = candidate_paths(object_path)
        base_key = f"{bucket}:{candidates[0]}"

        if not force:
            for candidate in candidates:
                key = f"{bucket}:{candidate}"
                entry = self._entries.get(key)
                if entry is not None and entry.expires_at_ms - now_ms > self._threshold_ms:
                    if key != base_key:
                        self._entries[base_key] = entry
                    return entry.url

        last_error: Optional[BaseException] = None
        for candidate in candidates:
            try:
                url = self._signer(bucket, candidate, self._lifetime_seconds)
            except Exception as error:  # noqa: BLE001 - try the next candidate path
                LOGGER.debug("Signing %s:%s failed: %s", bucket, candidate, error)
                last_error = error
                continue
            if not url:
                last_error = SignedUrlError(f"No signed URL returned for {bucket}:{candidate}")
                continue
            entry = CacheEntry(url=url, expires_at_ms=now_ms + self._lifetime_seconds * 1000)
            self._entries[f"{bucket}:{candidate}"] = entry
            self._entries[base_key] = entry
            return url

        if isinstance(last_error, SignedUrlError):
            raise last_error
        raise SignedUrlError(f"Failed to generate signed URL for {bucket}:{object_path}") from last_error

    def clear(self, prefix: Optional[str] = None) -> None:
        if not prefix:
            self._entries.clear()
            return
        for key in [key for key in self._entries if key.startswith(prefix)]:
            del self._entries[key]

    def evict_expired(self) -> int:
        now_ms = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at_ms <= now_ms]
        for key in expired:
            del self._entries[key]
        return len(expired)


__all__ = ["CacheEntry", "SignedUrlCache", "SignedUrlError", "candidate_paths"]
