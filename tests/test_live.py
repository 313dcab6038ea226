"""
Tests for the WebSocket /ws live event stream.

Validates token handling on the upgrade, tenant filtering of delivered
events, process-wide setting events, heartbeat announcements, and
subscriber cleanup on disconnect and reconnect.

CHANGELOG:
- 2026-10-17: Cover reconnects and heartbeat announcements
- 2026-10-17: Initial creation

TODO:
- None
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

ADMIN = {"Authorization": "Bearer admin-token"}
USER_A = {"Authorization": "Bearer user-a"}
RAD_READING = {"device_name": "D1", "data": [{"sensor_name": "RAD", "value": 7}]}


class TestLiveHandshake:
    """Authentication of the WebSocket upgrade."""

    def test_missing_token_closes_with_policy_violation(
        self, client: TestClient
    ) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass
        assert exc_info.value.code == 1008

    def test_invalid_token_closes_with_policy_violation(
        self, client: TestClient
    ) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=nope"):
                pass
        assert exc_info.value.code == 1008

    def test_subscriber_counted_while_connected(self, client: TestClient) -> None:
        with client.websocket_connect("/ws?token=user-a"):
            health = client.get("/api/health").json()
            assert health["live_subscribers"] == 1


class TestLiveEvents:
    """Events delivered over the socket."""

    def test_setting_update_reaches_every_tenant(self, client: TestClient) -> None:
        with client.websocket_connect("/ws?token=user-b") as ws:
            client.put("/api/settings/timezone", json={"value": "UTC"}, headers=ADMIN)

            message = ws.receive_json()

        assert message["type"] == "setting_updated"
        assert message["data"] == {"key": "timezone", "value": "UTC"}
        assert "ts" in message

    def test_own_tenant_samples_delivered(
        self, client: TestClient, api_seeded: dict
    ) -> None:
        with client.websocket_connect("/ws?token=user-a") as ws:
            client.post("/api/sensor-data", json=RAD_READING)

            message = ws.receive_json()

        assert message["type"] == "sample_ingested"
        assert message["data"]["device_id"] == api_seeded["d1"]

    def test_other_tenant_samples_not_delivered(
        self, client: TestClient, api_seeded: dict
    ) -> None:
        with client.websocket_connect("/ws?token=user-b") as ws:
            client.post("/api/sensor-data", json=RAD_READING)
            client.put("/api/settings/timezone", json={"value": "UTC"}, headers=ADMIN)

            message = ws.receive_json()

        # The first message user-b sees is the process-wide setting change.
        assert message["type"] == "setting_updated"

    def test_device_change_announced(
        self, client: TestClient, api_seeded: dict
    ) -> None:
        with client.websocket_connect("/ws?token=admin-token") as ws:
            client.patch(
                f"/api/devices/{api_seeded['d1']}",
                json={"description": "roof"},
                headers=USER_A,
            )

            message = ws.receive_json()

        assert message["type"] == "device_updated"
        assert message["data"]["action"] == "updated"
        assert message["data"]["device"]["description"] == "roof"

    def test_heartbeat_announced_to_owner(
        self, client: TestClient, api_seeded: dict
    ) -> None:
        with client.websocket_connect("/ws?token=user-a") as ws:
            client.post(
                "/api/devices/register",
                json={"name": "D1", "ip_address": "10.0.0.9"},
            )

            message = ws.receive_json()

        assert message["type"] == "device_updated"
        assert message["data"]["action"] == "heartbeat"
        assert message["data"]["device"]["ip_address"] == "10.0.0.9"

    def test_disconnect_removes_subscriber(self, client: TestClient) -> None:
        with client.websocket_connect("/ws?token=user-a"):
            pass

        assert client.app.state.bus.subscriber_count == 0

    def test_reconnect_after_disconnect(self, client: TestClient) -> None:
        for value in ("UTC", "Europe/Brussels"):
            with client.websocket_connect("/ws?token=user-a") as ws:
                client.put(
                    "/api/settings/timezone", json={"value": value}, headers=ADMIN
                )

                message = ws.receive_json()

            assert message["data"]["value"] == value
            assert client.app.state.bus.subscriber_count == 0
