"""Tests for the relay HTTP routes and WebSocket endpoint."""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from panelsync.config import Settings
from panelsync.relay import Relay, create_app


@pytest.fixture
def relay() -> Relay:
    return Relay()


@pytest.fixture
def client(relay) -> TestClient:
    app = create_app(Settings(api_key=None), relay=relay)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def secured_client(relay) -> TestClient:
    app = create_app(Settings(api_key="s3cret"), relay=relay)
    with TestClient(app) as c:
        yield c


def register(ws, client_type: str) -> str:
    hello = ws.receive_json()
    assert hello["type"] == "server.hello"
    ws.send_json({"type": "client.register", "clientType": client_type})
    if client_type == "main":
        # A registering primary is asked for its own full state
        assert ws.receive_json() == {"type": "server.requestFullState", "targetClientId": None}
    return hello["clientId"]


def wait_for_stats(client: TestClient, predicate, attempts: int = 200) -> dict:
    """Poll /ws/stats until ``predicate`` holds. Frames are handled on another thread."""
    for _ in range(attempts):
        stats = client.get("/ws/stats").json()
        if predicate(stats):
            return stats
        time.sleep(0.01)
    raise AssertionError(f"stats never matched: {stats}")


# =============================================================================
# HTTP Routes
# =============================================================================


class TestHealth:
    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert "timestamp" in body

    def test_stats_empty(self, client) -> None:
        body = client.get("/ws/stats").json()

        assert body["active_connections"] == 0
        assert body["roles"] == {"unclassified": 0, "primary": 0, "remote": 0}
        assert body["dropped_commands"] == 0


class TestCreatePanelRoute:
    """Tests for POST /api/panels."""

    def test_no_primary_reports_failure(self, client, relay) -> None:
        response = client.post("/api/panels", json={"title": "Bass"})

        assert response.status_code == 200
        assert response.json() == {"success": False, "forwarded": 0}
        assert relay.dropped_commands == 1

    def test_forwards_to_primary(self, client) -> None:
        with client.websocket_connect("/ws") as primary:
            register(primary, "main")
            wait_for_stats(client, lambda s: s["roles"]["primary"] == 1)

            response = client.post("/api/panels", json={"title": "Bass", "code": 's("bd")'})
            command = primary.receive_json()

        assert response.json() == {"success": True, "forwarded": 1}
        assert command["type"] == "panel.create"
        assert command["data"]["title"] == "Bass"
        assert command["data"]["code"] == 's("bd")'

    def test_title_too_long_rejected(self, client) -> None:
        response = client.post("/api/panels", json={"title": "x" * 201})
        assert response.status_code == 422

    def test_missing_api_key(self, secured_client) -> None:
        response = secured_client.post("/api/panels", json={"title": "Bass"})
        assert response.status_code == 401

    def test_wrong_api_key(self, secured_client) -> None:
        response = secured_client.post(
            "/api/panels", json={"title": "Bass"}, headers={"X-API-Key": "nope"}
        )
        assert response.status_code == 401

    def test_valid_api_key(self, secured_client) -> None:
        response = secured_client.post(
            "/api/panels", json={"title": "Bass"}, headers={"X-API-Key": "s3cret"}
        )
        assert response.status_code == 200


# =============================================================================
# WebSocket Endpoint
# =============================================================================


class TestWebSocketEndpoint:
    """Tests that drive the relay through real WebSocket frames."""

    def test_hello_on_connect(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()

        assert hello["type"] == "server.hello"
        assert hello["clientId"]

    def test_remote_registration_requests_full_state(self, client) -> None:
        with client.websocket_connect("/ws") as primary:
            register(primary, "main")
            wait_for_stats(client, lambda s: s["roles"]["primary"] == 1)

            with client.websocket_connect("/ws") as remote:
                remote_id = register(remote, "remote")
                request = primary.receive_json()

        assert request == {"type": "server.requestFullState", "targetClientId": remote_id}

    def test_command_and_broadcast_round_trip(self, client) -> None:
        with client.websocket_connect("/ws") as primary:
            register(primary, "main")
            wait_for_stats(client, lambda s: s["roles"]["primary"] == 1)

            with client.websocket_connect("/ws") as remote:
                register(remote, "remote")
                assert primary.receive_json()["type"] == "server.requestFullState"

                remote.send_json({"type": "panel.play", "panel": "p1"})
                assert primary.receive_json() == {"type": "panel.play", "panel": "p1"}

                update = {
                    "type": "state.update",
                    "panels": [{"panel": "p1", "playing": True, "stale": False}],
                }
                primary.send_json(update)
                assert remote.receive_json() == update

    def test_remote_told_when_primary_leaves(self, client) -> None:
        with client.websocket_connect("/ws") as remote:
            register(remote, "remote")
            assert remote.receive_json() == {"type": "server.primaryStatus", "connected": False}

            with client.websocket_connect("/ws") as primary:
                register(primary, "main")

            assert remote.receive_json() == {"type": "server.primaryStatus", "connected": False}

    def test_malformed_frame_is_counted(self, client, relay) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            ws.send_text("[1, 2, 3]")
            stats = wait_for_stats(client, lambda s: s["malformed_messages"] == 2)

        assert stats["malformed_messages"] == 2
        assert stats["active_connections"] == 1

    def test_disconnect_removes_connection(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            register(ws, "remote")
            wait_for_stats(client, lambda s: s["roles"]["remote"] == 1)
        wait_for_stats(client, lambda s: s["active_connections"] == 0)


class TestStaticFiles:
    def test_serves_index(self, tmp_path) -> None:
        (tmp_path / "index.html").write_text("<h1>remote</h1>")
        app = create_app(Settings(static_dir=tmp_path), relay=Relay())

        with TestClient(app) as c:
            response = c.get("/")

        assert response.status_code == 200
        assert "remote" in response.text

    def test_missing_directory_is_skipped(self, tmp_path) -> None:
        app = create_app(Settings(static_dir=tmp_path / "missing"), relay=Relay())

        with TestClient(app) as c:
            assert c.get("/health").status_code == 200
