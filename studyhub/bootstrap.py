"""Bootstrap logic that prepares runtime directories before the service starts."""

from __future__ import annotations

import logging
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_storage_root()
        self._log_presence_settings()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_storage_root(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(
                f"Storage directory '{storage_root}' is not writable; "
                "check permissions or point storage_root elsewhere."
            )
        LOGGER.debug("Ensured directory exists: %s", storage_root)

    def _log_presence_settings(self) -> None:
        presence = self._config.presence
        if presence.sweep_interval_ms > presence.expiry_ms:
            LOGGER.warning(
                "Sweep interval (%s ms) exceeds expiry window (%s ms); "
                "typing indicators may linger past their deadline.",
                presence.sweep_interval_ms,
                presence.expiry_ms,
            )
        LOGGER.debug(
            "Presence timings: expiry=%sms throttle=%sms sweep=%sms",
            presence.expiry_ms,
            presence.throttle_ms,
            presence.sweep_interval_ms,
        )


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
