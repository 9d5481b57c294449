"""Persistence helpers for user interface settings."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)

DEFAULT_SUMMARY_LIMIT = 3


@dataclass
class UISettings:
    """Container for customisable UI options."""

    debug_enabled: bool = False
    summary_limit: int = DEFAULT_SUMMARY_LIMIT


def normalize_summary_limit(value: object) -> int:
    try:
        limit = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_SUMMARY_LIMIT
    return max(1, limit)


class SettingsStore:
    """Load and store :class:`UISettings` under the storage root."""

    def __init__(self, config: AppConfig) -> None:
        self._path = config.settings_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UISettings:
        if not self._path.exists():
            return UISettings()

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self._path, error)
            return UISettings()
        if not isinstance(payload, dict):
            return UISettings()

        settings = UISettings()
        if "debug_enabled" in payload:
            settings.debug_enabled = bool(payload["debug_enabled"])
        if "summary_limit" in payload:
            settings.summary_limit = normalize_summary_limit(payload["summary_limit"])
        return settings

    def save(self, settings: UISettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = asdict(settings)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


__all__ = ["DEFAULT_SUMMARY_LIMIT", "SettingsStore", "UISettings", "normalize_summary_limit"]
