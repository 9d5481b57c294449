from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from studyhub.bootstrap import Bootstrapper
from studyhub.config import AppConfig, PresenceSettings
from studyhub.services.simulation import VirtualClock


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",
            \"presence\": {\"expiry_ms\": 5000, \"throttle_ms\": 2500, \"sweep_interval_ms\": 1000}
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    for variable in ("STUDYHUB_EXPIRY_MS", "STUDYHUB_THROTTLE_MS", "STUDYHUB_SWEEP_INTERVAL_MS"):
        monkeypatch.delenv(variable, raising=False)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "presence": {"expiry_ms": 5000, "throttle_ms": 2500, "sweep_interval_ms": 1000},
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture()
def fast_sweep() -> PresenceSettings:
    return PresenceSettings(expiry_ms=5000, throttle_ms=2500, sweep_interval_ms=10)
