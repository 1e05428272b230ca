import time

import requests

from fastlane.services.correlation import ResponseCorrelator
from fastlane.services.driver_client import DriverPoller

API = "http://localhost:5000"
DRIVER = "Asha"


def call(method, path, payload=None):
    resp = requests.request(method, f"{API}{path}", json=payload, timeout=5)
    resp.raise_for_status()
    return resp.json()


print("--- Fastlane Ambulance Run Simulator ---")

# 1. Put two officers on duty near the route
print("1. Registering on-duty officers...")
officers = [
    ("OFF-001", "Officer Kiran", 17.7000, 83.2500),
    ("OFF-002", "Officer Devi", 17.7150, 83.3000),
]
for officer_id, name, lat, lon in officers:
    call("PUT", f"/api/v1/responders/{officer_id}/location", {
        "name": name,
        "latitude": lat,
        "longitude": lon,
    })
    print(f"   {name} at ({lat}, {lon})")

# 2. Drive the ambulance along the route (Gajuwaka → RK Beach)
route = [
    (17.6900, 83.2100),
    (17.6950, 83.2300),
    (17.7000, 83.2450),
    (17.7080, 83.2700),
    (17.7150, 83.2950),
]
journey = {
    "startAddress": "Gajuwaka",
    "endAddress": "RK Beach",
    "startLocation": {"latitude": route[0][0], "longitude": route[0][1]},
    "endLocation": {"latitude": route[-1][0], "longitude": route[-1][1]},
    "routeCoordinates": [{"latitude": lat, "longitude": lon} for lat, lon in route],
    "area": "Visakhapatnam",
}

print("2. Simulating ambulance movement...")
sent = []
for lat, lon in route:
    result = call("POST", f"/api/v1/ambulances/{DRIVER}/position", {
        **journey,
        "location": {"latitude": lat, "longitude": lon},
    })
    sent.extend(result["alerts"])
    print(f"   [GPS] Lat: {lat}, Lon: {lon} -> {result['count']} new alert(s)")
    time.sleep(2.0)

# 3. First officer accepts; the driver's poller picks it up exactly once
if sent:
    first = sent[0]
    print(f"3. {first['policeName']} accepts alert #{first['id']}...")
    call("POST", "/api/v1/alerts/respond", {
        "alertId": first["id"],
        "trafficStatus": "accepted",
        "officerName": first["policeName"],
    })

poller = DriverPoller(ResponseCorrelator(DRIVER), base_url=API)
for attempt in range(2):
    events = poller.poll_once()
    print(f"   poll {attempt + 1}: {len(events)} new response(s)")
    for event in events:
        print(f"   #{event.alert_id} → {event.outcome.value}: {event.message}")

print("\n--- Simulation Complete ---")
