from __future__ import annotations

import json
import logging

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from studyhub.config import AppConfig, PresenceSettings
from studyhub.presence import InMemoryTransport
from studyhub.services.simulation import VirtualClock
from studyhub.web import create_app


DIRECT = "direct:ana:ben"


def test_health_reports_transport(temp_config) -> None:
    client = TestClient(create_app(temp_config))

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "transport": "InMemoryTransport"}


def test_context_endpoints_derive_keys(temp_config) -> None:
    client = TestClient(create_app(temp_config))

    direct = client.get("/api/contexts/direct", params={"a": "ben", "b": "ana"})
    group = client.get("/api/contexts/group/physics-101")
    invalid = client.get("/api/contexts/direct", params={"a": "ana", "b": "b:c"})

    assert direct.json() == {"context": DIRECT, "channel": f"typing:{DIRECT}", "mode": "direct"}
    assert group.json() == {
        "context": "group:physics-101",
        "channel": "typing:group:physics-101",
        "mode": "group",
    }
    assert invalid.status_code == 400


def test_presence_settings_are_exposed(temp_config) -> None:
    client = TestClient(create_app(temp_config))

    response = client.get("/api/presence/settings")

    assert response.json() == {
        "presence": {"expiry_ms": 5000, "throttle_ms": 2500, "sweep_interval_ms": 1000}
    }


def test_settings_round_trip_is_persisted(temp_config) -> None:
    client = TestClient(create_app(temp_config))

    assert client.get("/api/settings").json() == {
        "settings": {"debug_enabled": False, "summary_limit": 3}
    }

    response = client.put("/api/settings", json={"debug_enabled": False, "summary_limit": 2})
    assert response.status_code == 200
    assert response.json()["settings"]["summary_limit"] == 2

    stored = json.loads(temp_config.settings_file.read_text(encoding="utf-8"))
    assert stored == {"debug_enabled": False, "summary_limit": 2}

    reloaded = TestClient(create_app(temp_config))
    assert reloaded.get("/api/settings").json()["settings"]["summary_limit"] == 2

    rejected = client.put("/api/settings", json={"summary_limit": 0})
    assert rejected.status_code == 422


def test_debug_logs_include_settings_events(temp_config, caplog) -> None:
    caplog.set_level(logging.INFO)
    client = TestClient(create_app(temp_config))
    client.put("/api/settings", json={"debug_enabled": False, "summary_limit": 4})

    payload = client.get("/api/debug/logs").json()

    assert payload["enabled"] is False
    assert any(entry["message"] == "Persisted settings" for entry in payload["logs"])
    assert payload["next"] >= max(entry["id"] for entry in payload["logs"])


@pytest.mark.parametrize(
    "path",
    [
        f"/ws/typing/{DIRECT}",
        f"/ws/typing/{DIRECT}?participant_id=%20",
        "/ws/typing/lobby:main?participant_id=ana",
    ],
)
def test_typing_socket_rejects_invalid_connections(temp_config, path: str) -> None:
    client = TestClient(create_app(temp_config))

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(path) as websocket:
            websocket.receive_json()


def test_typing_socket_broadcasts_between_participants(temp_config) -> None:
    transport = InMemoryTransport()
    app = create_app(temp_config, transport=transport)

    with TestClient(app) as client:
        with client.websocket_connect(f"/ws/typing/{DIRECT}?participant_id=ana&name=Ana") as ana:
            initial = ana.receive_json()
            assert initial == {"type": "typists", "context": DIRECT, "participants": [], "summary": ""}

            with client.websocket_connect(f"/ws/typing/{DIRECT}?participant_id=ben") as ben:
                assert ben.receive_json()["participants"] == []
                assert client.get("/api/presence/contexts").json() == {"contexts": {DIRECT: 2}}

                ana.send_json({"type": "typing"})
                assert ana.receive_json() == {"type": "ack", "sent": True}

                update = ben.receive_json()
                assert update["type"] == "typists"
                assert update["participants"] == ["ana"]
                assert update["summary"] == "Ana typing…"

                ana.send_json({"type": "typing"})
                assert ana.receive_json() == {"type": "ack", "sent": False}

                ben.send_json({"type": "snapshot"})
                assert ben.receive_json()["participants"] == ["ana"]

    assert transport.subscriber_count(f"typing:{DIRECT}") == 0


def test_typing_socket_reports_bad_frames(temp_config) -> None:
    client = TestClient(create_app(temp_config))

    with client.websocket_connect("/ws/typing/group:g1?participant_id=ana") as websocket:
        websocket.receive_json()

        websocket.send_text("not json")
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"type": "wave"})
        error = websocket.receive_json()
        assert error["type"] == "error"
        assert "wave" in error["detail"]


def test_debug_toggle_restores_startup_level(temp_config, caplog) -> None:
    caplog.set_level(logging.WARNING)
    client = TestClient(create_app(temp_config))
    root_logger = logging.getLogger()
    assert root_logger.level == logging.WARNING

    client.put("/api/settings", json={"debug_enabled": True, "summary_limit": 3})
    assert root_logger.level == logging.DEBUG

    client.put("/api/settings", json={"debug_enabled": False, "summary_limit": 3})
    assert root_logger.level == logging.WARNING


def test_debug_log_download_is_plain_text(temp_config, caplog) -> None:
    caplog.set_level(logging.INFO)
    client = TestClient(create_app(temp_config))
    client.put("/api/settings", json={"debug_enabled": False, "summary_limit": 5})

    response = client.get("/api/debug/logs/download")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="typing_')
    assert disposition.endswith('.log"')
    assert "Persisted settings" in response.text


def test_typing_socket_pushes_eviction_after_expiry(temp_config) -> None:
    clock = VirtualClock()
    config = AppConfig(
        storage_root=temp_config.storage_root,
        presence=PresenceSettings(expiry_ms=5000, throttle_ms=2500, sweep_interval_ms=10),
    )
    app = create_app(config, clock=clock)

    with TestClient(app) as client:
        with client.websocket_connect(f"/ws/typing/{DIRECT}?participant_id=ana&name=Ana") as ana:
            ana.receive_json()
            with client.websocket_connect(f"/ws/typing/{DIRECT}?participant_id=ben") as ben:
                ben.receive_json()

                ana.send_json({"type": "typing"})
                assert ana.receive_json() == {"type": "ack", "sent": True}
                assert ben.receive_json()["participants"] == ["ana"]

                clock.advance_to(5000)

                assert ben.receive_json() == {
                    "type": "typists",
                    "context": DIRECT,
                    "participants": [],
                    "summary": "",
                }
