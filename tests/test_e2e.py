"""
End-to-end scenario across the whole service.

An administrator creates tenant Acme, a user of Acme registers device D1
with a RAD radiation sensor decoded as unsigned16, a dashboard connects to
the live stream, and the field device submits a raw reading. The sample is
decoded, stored, announced live, and visible through the latest-value,
range, statistics and CSV endpoints, but not to another tenant.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from fastapi.testclient import TestClient

ADMIN = {"Authorization": "Bearer admin-token"}
USER_A = {"Authorization": "Bearer user-a"}
USER_B = {"Authorization": "Bearer user-b"}


def test_register_ingest_and_observe(client: TestClient) -> None:
    acme = client.post(
        "/api/admin/organizations", json={"name": "Acme"}, headers=ADMIN
    ).json()
    client.post("/api/admin/organizations", json={"name": "Beta"}, headers=ADMIN)
    assert acme["id"] == 1

    device = client.post("/api/devices", json={"name": "D1"}, headers=USER_A).json()
    sensor = client.post(
        f"/api/devices/{device['id']}/sensors",
        json={"name": "RAD", "sensor_type": "radiation", "unit": "W/m²"},
        headers=USER_A,
    ).json()
    client.put(
        f"/api/sensors/{sensor['id']}/decoding",
        json={"address": 0, "register_kind": "holding", "encoding": "unsigned16"},
        headers=USER_A,
    )

    with client.websocket_connect("/ws?token=user-a") as ws:
        response = client.post(
            "/api/sensor-data",
            json={"device_name": "D1", "data": [{"sensor_name": "RAD", "value": 850}]},
        )
        assert response.json()["accepted"] == 1

        message = ws.receive_json()

    assert message["type"] == "sample_ingested"
    (live_sample,) = message["data"]["samples"]
    assert live_sample["sensor_name"] == "RAD"
    assert live_sample["value"] == 850.0

    (latest,) = client.get("/api/devices/D1/latest", headers=USER_A).json()
    assert latest["sensor_name"] == "RAD"
    assert latest["value"] == 850.0
    assert latest["unit"] == "W/m²"
    assert latest["ts"] == live_sample["ts"]

    rows = client.get(
        f"/api/sensor-data?device_id={device['id']}", headers=USER_A
    ).json()
    assert [r["value"] for r in rows] == [850.0]

    (stats,) = client.get("/api/statistics", headers=USER_A).json()
    assert stats["count"] == 1
    assert stats["max"] == 850.0

    csv_lines = client.get("/api/export/csv", headers=USER_A).text.splitlines()
    assert len(csv_lines) == 2

    assert client.get("/api/devices/D1/latest", headers=USER_B).json() == []
    assert client.get("/api/sensor-data", headers=USER_B).json() == []

    devices = client.get("/api/devices", headers=USER_A).json()
    assert devices[0]["is_online"] is True
    assert devices[0]["last_seen"] is not None
