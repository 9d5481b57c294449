"""Configuration loading utilities for the StudyHub presence service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".studyhub_write_check"

DEFAULT_EXPIRY_MS = 5000
DEFAULT_THROTTLE_MS = 2500
DEFAULT_SWEEP_INTERVAL_MS = 1000

_ENV_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("expiry_ms", "STUDYHUB_EXPIRY_MS"),
    ("throttle_ms", "STUDYHUB_THROTTLE_MS"),
    ("sweep_interval_ms", "STUDYHUB_SWEEP_INTERVAL_MS"),
)


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. When no candidate can be prepared the
    original ``preferred`` path is returned so that bootstrap can report it.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_positive_ms(value: Any, *, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring invalid %s value %r; using %s ms.", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("Ignoring non-positive %s value %r; using %s ms.", name, value, default)
        return default
    return parsed


@dataclass(frozen=True)
class PresenceSettings:
    """Timing windows for typing announcements."""

    expiry_ms: int = DEFAULT_EXPIRY_MS
    throttle_ms: int = DEFAULT_THROTTLE_MS
    sweep_interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_ms / 1000.0

    @classmethod
    def from_mapping(
        cls,
        mapping: Optional[Mapping[str, Any]],
        *,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "PresenceSettings":
        values: Dict[str, Any] = dict(mapping or {})
        env = os.environ if environ is None else environ
        for key, variable in _ENV_OVERRIDES:
            override = env.get(variable)
            if override is not None and override.strip():
                values[key] = override.strip()
        return cls(
            expiry_ms=_coerce_positive_ms(
                values.get("expiry_ms"), name="expiry_ms", default=DEFAULT_EXPIRY_MS
            ),
            throttle_ms=_coerce_positive_ms(
                values.get("throttle_ms"), name="throttle_ms", default=DEFAULT_THROTTLE_MS
            ),
            sweep_interval_ms=_coerce_positive_ms(
                values.get("sweep_interval_ms"),
                name="sweep_interval_ms",
                default=DEFAULT_SWEEP_INTERVAL_MS,
            ),
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and presence timings for the application."""

    storage_root: Path
    presence: PresenceSettings = field(default_factory=PresenceSettings)

    @property
    def settings_file(self) -> Path:
        return (self.storage_root / "settings.json").resolve()

    @classmethod
    def from_mapping(
        cls,
        mapping: Dict[str, Any],
        *,
        base_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".studyhub" / "storage"
        storage_root, _ = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )
        presence = PresenceSettings.from_mapping(mapping.get("presence"), environ=environ)
        return cls(storage_root=storage_root, presence=presence)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "PresenceSettings", "load_config"]
