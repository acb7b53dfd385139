"""
HTTP and websocket API tests for driver, guardian and simulator endpoints.
"""

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.app.main import app
from backend.tests.support import PAULISTA, make_stop

METERS_PER_DEGREE_LAT = 111_194.93


def near_paulista(meters):
    return {"latitude": PAULISTA[0] + meters / METERS_PER_DEGREE_LAT, "longitude": PAULISTA[1]}


def route_payload():
    return {
        "driver_id": "driver-1",
        "driver_name": "Carlos",
        "direction": "to_school",
        "stops": [
            make_stop("student-a", ["guardian-1"]),
            make_stop("school", [], coordinate=(-23.5600, -46.6500), kind="school", label="Escola Central"),
        ],
    }


async def start_route(client):
    response = await client.post("/v1/driver/routes/start", json=route_payload())
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_health_and_root(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] == "memory"
    assert body["push_circuit"] == "CLOSED"

    response = await client.get("/")
    assert response.json()["health"] == "/health"


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/v1/driver/routes/active", headers={"X-Correlation-ID": "trace-123"})
    assert response.headers["X-Correlation-ID"] == "trace-123"
    assert "X-Process-Time" in response.headers


@pytest.mark.asyncio
async def test_start_route(client):
    route = await start_route(client)

    assert route["is_active"] is True
    assert [s["status"] for s in route["stops"]] == ["pending", "pending"]
    active = await client.get("/v1/driver/routes/active")
    assert active.json()["id"] == route["id"]


@pytest.mark.asyncio
async def test_start_route_validation(client):
    payload = route_payload()
    payload["stops"].append(make_stop("student-a", ["guardian-9"]))

    response = await client.post("/v1/driver/routes/start", json=payload)

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"

    payload = route_payload()
    payload["stops"] = []
    assert (await client.post("/v1/driver/routes/start", json=payload)).status_code == 422


@pytest.mark.asyncio
async def test_location_without_route_is_conflict(client):
    response = await client.post("/v1/driver/routes/location", json=near_paulista(100))

    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ROUTE_001"


@pytest.mark.asyncio
async def test_location_out_of_range_is_rejected(client):
    await start_route(client)
    response = await client.post("/v1/driver/routes/location", json={"latitude": 91, "longitude": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_location_updates_create_notifications(client, transport):
    await start_route(client)

    response = await client.post("/v1/driver/routes/location", json=near_paulista(400))
    assert response.status_code == 200
    assert response.json()["tracked"] is True
    await client.post("/v1/driver/routes/location", json=near_paulista(420))
    await client.post("/v1/driver/routes/location", json=near_paulista(30))

    response = await client.get("/v1/guardians/guardian-1/notifications")
    types = [n["type"] for n in response.json()]
    assert sorted(types) == ["arrival", "proximity"]
    assert len(transport.delivered) == 2

    count = await client.get("/v1/guardians/guardian-1/notifications/unread-count")
    assert count.json() == {"status": "success", "count": 2}

    other = await client.get("/v1/guardians/guardian-2/notifications")
    assert other.json() == []


@pytest.mark.asyncio
async def test_notification_management(client):
    await start_route(client)
    await client.post("/v1/driver/routes/location", json=near_paulista(30))
    notifications = (await client.get("/v1/guardians/guardian-1/notifications")).json()
    first_id = notifications[0]["id"]

    response = await client.patch(f"/v1/guardians/guardian-2/notifications/{first_id}/read")
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"

    response = await client.patch(f"/v1/guardians/guardian-1/notifications/{first_id}/read")
    assert response.json() == {"status": "success"}
    unread = await client.get("/v1/guardians/guardian-1/notifications", params={"unread_only": True})
    assert len(unread.json()) == 1

    response = await client.patch("/v1/guardians/guardian-1/notifications/read-all")
    assert response.json()["count"] == 1

    response = await client.delete(f"/v1/guardians/guardian-1/notifications/{first_id}")
    assert response.status_code == 200
    response = await client.delete(f"/v1/guardians/guardian-1/notifications/{first_id}")
    assert response.status_code == 404

    response = await client.delete("/v1/guardians/guardian-1/notifications")
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_notification_click_interaction(client):
    await start_route(client)
    await client.post("/v1/driver/routes/location", json=near_paulista(300))
    notification = (await client.get("/v1/guardians/guardian-1/notifications")).json()[0]

    response = await client.post(
        "/v1/guardians/guardian-1/notifications/interactions",
        json={"type": "notification-click", "payload": {**notification["payload"], "notification_id": notification["id"]}},
    )

    body = response.json()
    assert body["marked_read"] is True
    assert body["deep_link"].startswith("/guardian/tracking?route_id=")

    response = await client.post(
        "/v1/guardians/guardian-1/notifications/interactions", json={"type": "notification-swipe", "payload": {}}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stop_transitions(client):
    await start_route(client)

    response = await client.patch("/v1/driver/routes/stops/student-a", json={"status": "picked_up"})
    assert response.status_code == 200
    assert response.json()["stops"][0]["status"] == "picked_up"

    response = await client.patch("/v1/driver/routes/stops/student-a", json={"status": "pending"})
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ROUTE_002"
    assert response.json()["details"]["current_status"] == "picked_up"

    response = await client.patch("/v1/driver/routes/stops/nobody", json={"status": "picked_up"})
    assert response.status_code == 404

    response = await client.patch(
        "/v1/driver/routes/stops/school", params={"strict": True}, json={"status": "dropped_off"}
    )
    assert response.status_code == 409

    statuses = [n["type"] for n in (await client.get("/v1/guardians/guardian-1/notifications")).json()]
    assert statuses == ["picked_up"]


@pytest.mark.asyncio
async def test_end_route(client):
    await start_route(client)

    assert (await client.post("/v1/driver/routes/end")).json() == {"ended": True}
    assert (await client.post("/v1/driver/routes/end")).json() == {"ended": False}
    assert (await client.get("/v1/driver/routes/active")).json() is None


@pytest.mark.asyncio
async def test_guardian_route_info(client):
    response = await client.get("/v1/guardians/guardian-1/route-info")
    assert response.json()["has_active_route"] is False

    await start_route(client)
    await client.post("/v1/driver/routes/location", json=near_paulista(1000))

    info = (await client.get("/v1/guardians/guardian-1/route-info")).json()
    assert info["has_active_route"] is True
    assert info["driver_name"] == "Carlos"
    assert info["next_stop"]["id"] == "student-a"
    assert info["distance_meters"] == pytest.approx(1000, abs=1)
    assert info["estimated_arrival"] is not None

    stranger = (await client.get("/v1/guardians/stranger/route-info")).json()
    assert stranger["has_active_route"] is False


@pytest.mark.asyncio
async def test_simulator_controls(client):
    response = await client.get("/v1/simulator")
    assert response.json()["location"]["latitude"] == pytest.approx(-23.5505)

    response = await client.post("/v1/simulator/start")
    assert response.json()["is_moving"] is True

    response = await client.post("/v1/simulator/stop")
    assert response.json()["is_moving"] is False

    response = await client.post("/v1/simulator/reset")
    assert response.json() == {
        "is_moving": False,
        "finished": False,
        "location": {"latitude": -23.5505, "longitude": -46.6333},
    }


def test_guardian_websocket_feed():
    with TestClient(app) as client:
        client.post("/v1/driver/routes/start", json=route_payload())

        with client.websocket_connect("/ws/guardians/guardian-1") as ws:
            initial = ws.receive_json()
            assert initial["type"] == "route"
            assert initial["data"]["has_active_route"] is True

            client.post("/v1/driver/routes/location", json=near_paulista(30))
            messages = [ws.receive_json() for _ in range(3)]
            assert [m["type"] for m in messages] == ["notification", "notification", "route"]
            assert [m["data"]["type"] for m in messages[:2]] == ["proximity", "arrival"]

            notification = messages[0]["data"]
            ws.send_json({
                "type": "notification-click",
                "payload": {**notification["payload"], "notification_id": notification["id"]},
            })
            reply = ws.receive_json()
            assert reply["type"] == "interaction"
            assert reply["data"]["marked_read"] is True

            ws.send_json({"type": "bogus"})
            assert ws.receive_json()["type"] == "error"

            client.post("/v1/driver/routes/end")
            ended = ws.receive_json()
            assert ended["type"] == "route"
            assert ended["data"]["has_active_route"] is False


def test_guardian_websocket_closes_when_sending_fails(mocker):
    async def failing_pump(websocket, queue):
        raise RuntimeError("send failed")

    mocker.patch("backend.app.api.v1.endpoints.guardian_tracking._pump", failing_pump)
    with TestClient(app) as client:
        engine = app.state.engine
        with client.websocket_connect("/ws/guardians/guardian-1") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 1011

        assert engine.route_channel.subscriber_count() == 0
        assert engine.notification_channel.subscriber_count() == 0
