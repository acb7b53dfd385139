"""
Pre-Deploy and Smoke Test Script.

Runs the application in-process and walks one school run end to end:
1. Health Check
2. Route Start -> Location Updates -> Guardian Notifications
3. Stop Transitions -> Automatic Route End
"""

import sys

from fastapi.testclient import TestClient
from backend.app.main import app

METERS_PER_DEGREE_LAT = 111_194.93
STOP = (-23.5505, -46.6333)


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def near_stop(meters):
    return {"latitude": STOP[0] + meters / METERS_PER_DEGREE_LAT, "longitude": STOP[1]}


def main():
    print("🚀 Starting Deployment Validation...")

    with TestClient(app) as client:
        print_step("PRE-DEPLOY", "Checking /health...")
        response = client.get("/health")
        if response.status_code != 200:
            fail(f"Health check returned {response.status_code}")
        success(f"Healthy, store backend: {response.json().get('store')}")

        print_step("ROUTE", "Starting smoke-test route...")
        response = client.post("/v1/driver/routes/start", json={
            "driver_id": "smoke-driver",
            "driver_name": "Smoke Test",
            "direction": "to_school",
            "stops": [{
                "id": "smoke-stop",
                "label": "Smoke Student",
                "guardian_ids": ["smoke-guardian"],
                "coordinate": {"latitude": STOP[0], "longitude": STOP[1]},
            }],
        })
        if response.status_code != 201:
            fail(f"Route start failed: {response.text}")
        success(f"Route {response.json()['id']} started")

        print_step("TRACKING", "Driving towards the stop...")
        for meters in (2000, 400, 30):
            response = client.post("/v1/driver/routes/location", json=near_stop(meters))
            if response.status_code != 200:
                fail(f"Location update failed: {response.text}")

        response = client.get("/v1/guardians/smoke-guardian/notifications")
        types = sorted(n["type"] for n in response.json())
        if types != ["arrival", "proximity"]:
            fail(f"Unexpected notifications: {types}")
        success("Proximity and arrival notifications created once each")

        print_step("STOPS", "Picking up and dropping off...")
        for status in ("picked_up", "dropped_off"):
            response = client.patch("/v1/driver/routes/stops/smoke-stop", json={"status": status})
            if response.status_code != 200:
                fail(f"Stop transition to {status} failed: {response.text}")

        if client.get("/v1/driver/routes/active").json() is not None:
            fail("Route still active after every stop was dropped off")
        success("Route ended automatically")

        client.delete("/v1/guardians/smoke-guardian/notifications")

    print("🎉 Deployment validation passed")


if __name__ == "__main__":
    main()
