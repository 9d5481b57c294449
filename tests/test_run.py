"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

import run
from studyhub.bootstrap import BootstrapError
from studyhub.config import PresenceSettings


def _setup_serve(monkeypatch, tmp_path):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path, presence=PresenceSettings()),
    )
    monkeypatch.setattr(
        run,
        "_prepare_logging",
        lambda storage_root, level=None: captured.setdefault("log_level", level),
    )

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(config, root_path):
        captured["create_root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host="0.0.0.0", port=9000, root_path="api/", log_level="debug")

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_wires_app_into_uvicorn(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path)

    assert captured["config_kwargs"]["host"] == "0.0.0.0"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["config_kwargs"]["root_path"] == "/api"
    assert captured["create_root_path"] == "/api"
    assert captured["log_level"] == "debug"
    assert captured["server_run"] is True
    assert captured["app_state_server"] is captured["server_instance"]


def test_serve_exits_when_bootstrap_fails(monkeypatch):
    def failing_initialize():
        raise BootstrapError("Storage directory '/nope' is not writable")

    monkeypatch.setattr(run, "initialize_app", failing_initialize)

    result = CliRunner().invoke(run.cli, ["serve"])

    assert result.exit_code == 1
    assert "Startup failed" in result.output


def test_channel_command_prints_key_and_channel():
    runner = CliRunner()

    direct = runner.invoke(run.cli, ["channel", "direct", "ben", "ana"])
    group = runner.invoke(run.cli, ["channel", "group", "g1"])
    invalid = runner.invoke(run.cli, ["channel", "direct", "ana"])

    assert direct.exit_code == 0
    assert "Context: direct:ana:ben" in direct.output
    assert "Channel: typing:direct:ana:ben" in direct.output
    assert "Channel: typing:group:g1" in group.output
    assert invalid.exit_code != 0


def test_simulate_command_prints_timeline(monkeypatch):
    monkeypatch.setattr(
        run, "initialize_app", lambda: SimpleNamespace(presence=PresenceSettings())
    )

    result = CliRunner().invoke(run.cli, ["simulate", "--keystrokes", "0,1000,2600"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert "A types -> announce" in lines[0]
    assert "A types -> throttled" in lines[1]
    assert any(line.startswith("t=  7000ms") and "A typing…" in line for line in lines)
    assert any(line.startswith("t=  8000ms") and "(nobody typing)" in line for line in lines)


def test_simulate_rejects_bad_keystrokes():
    result = CliRunner().invoke(run.cli, ["simulate", "--keystrokes", "0,soon"])

    assert result.exit_code != 0


@pytest.fixture
def root_level():
    root_logger = logging.getLogger()
    original = root_logger.level
    yield root_logger
    root_logger.setLevel(original)


@pytest.mark.parametrize(
    "requested, expected",
    [("warning", logging.WARNING), ("debug", logging.DEBUG), ("info", logging.INFO)],
)
def test_serve_keeps_requested_log_level(monkeypatch, temp_config, root_level, requested, expected):
    captured = {}

    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "build_default_handlers", lambda storage_root: [])

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config

        def run(self):
            captured["level_while_serving"] = root_level.level

    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host="127.0.0.1", port=9001, root_path=None, log_level=requested)

    assert captured["level_while_serving"] == expected
    assert root_level.level == expected
