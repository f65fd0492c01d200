"""Tests for the MCP server management endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

SERVERS = {
    "servers": [
        {"id": "weather", "name": "Weather", "url": "http://weather.local/sse"},
        {"id": "search", "url": "ws://search.local/ws", "type": "websocket"},
    ]
}


class TestServerList:
    def test_empty_by_default(self, client: TestClient) -> None:
        response = client.get("/api/servers")

        assert response.status_code == 200
        assert response.json() == {"servers": [], "selected": []}

    def test_replace_servers(self, client: TestClient) -> None:
        response = client.put("/api/servers", json=SERVERS)

        assert response.status_code == 200
        servers = response.json()["servers"]
        assert [s["id"] for s in servers] == ["weather", "search"]
        assert servers[1]["name"] == "search"
        assert all(s["status"] == "disconnected" and s["selected"] is False for s in servers)

    def test_blank_url_rejected(self, client: TestClient) -> None:
        response = client.put("/api/servers", json={"servers": [{"id": "x", "url": " "}]})

        assert response.status_code == 422


class TestSelection:
    def test_select_starts_servers(self, client: TestClient) -> None:
        client.put("/api/servers", json=SERVERS)

        response = client.put("/api/servers/selection", json={"selected": ["search"]})

        assert response.status_code == 200
        assert response.json() == {"selected": ["search"], "started": ["search"], "stopped": []}

        active = client.get("/api/servers/active").json()
        assert [d["id"] for d in active] == ["search"]

        response = client.put("/api/servers/selection", json={"selected": ["weather"]})
        assert response.json()["stopped"] == ["search"]

    def test_unknown_id_is_404(self, client: TestClient) -> None:
        client.put("/api/servers", json=SERVERS)

        response = client.put("/api/servers/selection", json={"selected": ["ghost"]})

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "RES_3010"
        assert "ghost" in error["message"]


class TestStartStop:
    def test_start_and_stop(self, client: TestClient, probe: AsyncMock) -> None:
        client.put("/api/servers", json=SERVERS)

        started = client.post("/api/servers/weather/start")
        assert started.status_code == 200
        assert started.json()["status"] == "connected"
        probe.assert_awaited_once()

        stopped = client.post("/api/servers/weather/stop")
        assert stopped.json()["status"] == "disconnected"

        again = client.post("/api/servers/weather/stop")
        assert again.json()["status"] == "disconnected"

    def test_failed_start_reports_error(self, client: TestClient, probe: AsyncMock) -> None:
        probe.return_value = False
        client.put("/api/servers", json=SERVERS)

        body = client.post("/api/servers/weather/start").json()

        assert body["status"] == "error"
        assert body["error_message"]

    def test_unknown_server_is_404(self, client: TestClient) -> None:
        assert client.post("/api/servers/ghost/start").status_code == 404
        assert client.post("/api/servers/ghost/stop").status_code == 404
