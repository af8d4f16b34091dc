"""Tests for main.py: REST endpoints and the WebSocket channel."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import StubWLED, make_agent
from threecx_wled import main
from threecx_wled.models import ApplicationState, Color, DeviceState, StatsSource, Status


@pytest.fixture
def stub_wled():
    return StubWLED()


@pytest.fixture
def client(stub_wled):
    main.core.state = ApplicationState()
    main.core.subscribers = set()
    with (
        patch.object(main.core, "wled", stub_wled),
        patch.object(main.wled, "get_status", new=AsyncMock(return_value=None)),
    ):
        # No context manager: the lifespan (browser session) is not started
        yield TestClient(main.app)


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestStatusEndpoints:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_get_status(self, client):
        data = client.get("/api/status").json()
        assert data["status"] == "offline"
        assert data["monitoring"] is True
        assert data["wledConnected"] is False
        assert data["callStats"]["source"] == "default"
        assert data["teamStatus"] == []

    def test_get_status_with_device(self, client):
        device = DeviceState(on=True, bri=128, color=Color(r=0, g=255, b=0))
        with patch.object(main.wled, "get_status", new=AsyncMock(return_value=device)):
            data = client.get("/api/status").json()
        assert data["wledConnected"] is True
        assert data["wledStatus"]["color"] == {"r": 0, "g": 255, "b": 0}

    def test_manual_status(self, client, stub_wled):
        resp = client.post("/api/status", json={"status": "dnd"})
        assert resp.json() == {"success": True}
        assert main.core.state.current_status == Status.DND
        assert main.core.state.manual_override.active is True
        assert stub_wled.colors == [Color(r=128, g=0, b=128)]

    def test_invalid_status_rejected(self, client):
        assert client.post("/api/status", json={"status": "sleeping"}).status_code == 422

    def test_toggle_monitoring(self, client):
        client.post("/api/status", json={"monitoring": False})
        assert main.core.state.is_monitoring is False

    def test_clear_override(self, client):
        client.post("/api/status", json={"status": "away"})
        resp = client.post("/api/override/clear")
        assert resp.json()["success"] is True
        assert main.core.state.manual_override.active is False

    def test_debug(self, client):
        data = client.get("/api/debug").json()
        assert "debugInfo" in data
        assert data["connection"]["state"] == "uninitialized"


# ---------------------------------------------------------------------------
# Call stats
# ---------------------------------------------------------------------------


class TestCallStatsEndpoints:
    def test_get_call_stats(self, client):
        assert client.get("/api/callStats").json()["callStats"]["totalCalls"] == 0

    def test_manual_call_stats(self, client):
        resp = client.post("/api/call-stats", json={"waitingCalls": 3})
        data = resp.json()
        assert data["success"] is True
        assert data["callStats"]["waitingCalls"] == 3
        assert data["callStats"]["source"] == "manual"
        assert main.core.state.latest_call_stats.source == StatsSource.MANUAL

    def test_invalid_call_stats(self, client):
        resp = client.post("/api/call-stats", json={"waitingCalls": "lots"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False


# ---------------------------------------------------------------------------
# Team status
# ---------------------------------------------------------------------------


class TestTeamEndpoints:
    def test_team_status(self, client):
        main.core.state.roster = [make_agent(101, "Alice", queues="Sales")]
        data = client.get("/api/teamStatus").json()
        assert data["teamStatus"][0]["name"] == "Alice"
        assert data["teamStatus"][0]["queueCount"] == 1

    def test_grouped(self, client):
        main.core.state.roster = [
            make_agent(101, "Alice", queues="Sales"),
            make_agent(102, "Bob", Status.OFFLINE),
        ]
        data = client.get("/api/teamStatus/grouped", params={"includeOffline": "false"}).json()
        assert [a["id"] for a in data["queueAvailable"]] == ["101"]
        assert data["total"] == 1

    def test_update_team_member(self, client):
        main.core.state.roster = [make_agent(101, "Alice")]
        resp = client.post("/api/teamStatus/101", json={"status": "away"})
        assert resp.json()["teamMember"]["status"] == "away"
        assert resp.json()["teamMember"]["color"] == "orange"

    def test_update_unknown_member(self, client):
        resp = client.post("/api/teamStatus/999", json={"status": "away"})
        assert resp.status_code == 404
        assert resp.json()["success"] is False


# ---------------------------------------------------------------------------
# Device & session
# ---------------------------------------------------------------------------


class TestDeviceAndSessionEndpoints:
    def test_wled_status_unreachable(self, client):
        assert client.get("/api/wled/status").json()["connected"] is False

    def test_wled_test(self, client):
        with patch.object(main.core, "test_device", new=AsyncMock(return_value=True)):
            assert client.post("/api/wled/test").json() == {"success": True}

    def test_reset_auth(self, client):
        with patch.object(main.monitor, "reset_authentication", new=AsyncMock(return_value=True)):
            assert client.post("/api/reset-auth").json()["success"] is True

    def test_reset_auth_failure(self, client):
        with patch.object(main.monitor, "reset_authentication", new=AsyncMock(return_value=False)):
            data = client.post("/api/reset-auth").json()
        assert data == {"success": False, "error": "Authentication reset failed"}

    def test_take_screenshot(self, client):
        path = Path("screenshots/manual-screenshot.png")
        with patch.object(main.monitor, "take_screenshot", new=AsyncMock(return_value=path)):
            data = client.get("/api/take-screenshot").json()
        assert data == {"success": True, "screenshotPath": str(path)}

    def test_take_screenshot_disabled(self, client):
        assert client.get("/api/take-screenshot").json()["success"] is False


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


class TestWebSocket:
    def test_initial_messages(self, client):
        with client.websocket_connect("/ws") as ws:
            types = [ws.receive_json()["type"] for _ in range(3)]
        assert types == ["statusUpdate", "debug", "callStats"]

    def test_request_status(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.receive_json()
            ws.send_json({"type": "requestStatus"})
            assert ws.receive_json()["type"] == "statusUpdate"

    def test_status_message_broadcasts(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.receive_json()
            ws.send_json({"type": "status", "status": "onCall"})
            update = ws.receive_json()
            device = ws.receive_json()
        assert update["type"] == "statusUpdate"
        assert update["status"] == "onCall"
        assert update["manualOverride"] is True
        assert device == {"type": "wled", "success": True, "error": None}

    def test_invalid_status_message(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.receive_json()
            ws.send_json({"type": "status", "status": "sleeping"})
            assert ws.receive_json()["type"] == "error"

    def test_clear_manual_override(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.receive_json()
            ws.send_json({"type": "clearManualOverride"})
            assert ws.receive_json()["type"] == "statusUpdate"
            assert ws.receive_json() == {"type": "status", "success": True, "message": "Manual override cleared"}

    def test_plain_ping_and_bad_json(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.receive_json()
            ws.send_text("{broken")
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

