"""
Fastlane — FastAPI Application

REST + WebSocket API for ambulance ↔ responder route coordination.

Endpoints:
  POST   /api/v1/alerts                          — ambulance creates an alert
  GET    /api/v1/alerts?driverName=              — driver polling / responder dashboard
  GET    /api/v1/alerts/stats                    — counts by status and area
  POST   /api/v1/alerts/respond                  — responder accepts / rejects
  DELETE /api/v1/alerts/{id}                     — remove one alert
  DELETE /api/v1/alerts                          — clear all alerts
  PUT    /api/v1/responders/{id}/location        — responder GPS update
  GET    /api/v1/responders                      — on-duty responders
  GET    /api/v1/responders/corridor             — responders along a route segment
  POST   /api/v1/traffic-lights                  — register one traffic light
  POST   /api/v1/traffic-lights/seed             — bulk insert traffic lights
  GET    /api/v1/traffic-lights?minLat=…         — traffic lights, optionally in a bounding box
  GET    /api/v1/traffic-lights/corridor         — traffic lights along a route segment
  PATCH  /api/v1/traffic-lights/{id}             — change a light's signal state
  POST   /api/v1/ambulances/{driver}/position    — GPS tick, runs the matching engine
  DELETE /api/v1/ambulances/{driver}/journey     — forget a driver's journey state
  GET    /api/v1/directions                      — route from the directions provider
  WS     /ws/responder/{responder_id}            — receives alert:new, may send alert:respond
  WS     /ws/driver/{driver_name}                — receives alert:responded
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from fastlane.common.errors import FastlaneError, TransientIOError
from fastlane.common.logger import configure_logging
from fastlane.common.schemas import (
    Alert,
    AlertStatus,
    AmbulancePositionRequest,
    CreateAlertRequest,
    CreateTrafficLightRequest,
    GeoLocation,
    RespondRequest,
    ResponderRole,
    SeedTrafficLightsRequest,
    UpdateResponderLocationRequest,
    UpdateTrafficLightRequest,
)
from fastlane.config import get_settings
from fastlane.database import models  # noqa: F401  (registers tables)
from fastlane.database.session import Base, engine, get_db
from fastlane.services.alert_store import alert_store
from fastlane.services.directions import directions_client
from fastlane.services.matching_engine import alert_dispatcher
from fastlane.services.responder_directory import responder_directory
from fastlane.services.traffic_lights import traffic_light_registry
from fastlane.services.websocket_manager import ws_manager

logger = logging.getLogger(__name__)
settings = get_settings()

# ── App ───────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Fastlane — Emergency Route Coordination API",
    description="Ambulance proximity alerts, responder decisions and route coordination.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup() -> None:
    configure_logging(settings.log_level.value)
    Base.metadata.create_all(bind=engine)
    # Give WebSocket manager access to the running event loop
    ws_manager.set_event_loop(asyncio.get_event_loop())
    logger.info("Fastlane started — directory tables ready, WebSocket loop captured.")


# ── Error mapping ─────────────────────────────────────────────────────────────

@app.exception_handler(FastlaneError)
async def fastlane_error_handler(request: Request, exc: FastlaneError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


def _summary(alerts: List[Alert]) -> Dict[str, int]:
    return {
        "total": len(alerts),
        "pending": sum(1 for a in alerts if a.status == AlertStatus.PENDING),
        "acknowledged": sum(1 for a in alerts if a.status == AlertStatus.ACKNOWLEDGED),
    }


def _record_response(req: RespondRequest) -> Alert:
    """Store first, then push. A failed push never undoes the decision."""
    alert = alert_store.respond(
        req.alert_id, req.traffic_status, req.message, req.officer_name
    )
    ws_manager.publish_alert_responded(alert)
    return alert


# ── Health ────────────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "environment": settings.environment.value,
        "alerts_in_memory": len(alert_store),
    }


# ── Alerts ────────────────────────────────────────────────────────────────────

@app.post("/api/v1/alerts", status_code=status.HTTP_201_CREATED, tags=["Alerts"])
def create_alert(req: CreateAlertRequest) -> Dict[str, Any]:
    """Create a pending alert, visible to every responder."""
    alert = alert_store.create(req)
    ws_manager.publish_alert_created(alert)
    return {
        "success": True,
        "message": "Police alert created successfully",
        "alert": alert.to_wire(),
    }


@app.get("/api/v1/alerts", tags=["Alerts"])
def list_alerts(
    driver_name: Optional[str] = Query(None, alias="driverName"),
) -> Dict[str, Any]:
    """
    With driverName: every live alert of that driver (driver polling).
    Without: pending alerts only (responder dashboards).
    """
    alerts = alert_store.list_active(
        driver_name=driver_name,
        pending_only=not driver_name,
    )
    return {
        "success": True,
        "count": len(alerts),
        "alerts": [a.to_wire() for a in alerts],
        "stats": _summary(alerts),
    }


@app.get("/api/v1/alerts/stats", tags=["Alerts"])
def alert_stats() -> Dict[str, Any]:
    return {"success": True, "stats": alert_store.stats().to_wire()}


@app.post("/api/v1/alerts/respond", tags=["Alerts"])
def respond_to_alert(req: RespondRequest) -> Dict[str, Any]:
    alert = _record_response(req)
    return {
        "success": True,
        "message": "Response sent successfully",
        "alert": alert.to_wire(),
    }


@app.delete("/api/v1/alerts/{alert_id}", tags=["Alerts"])
def delete_alert(alert_id: int) -> Dict[str, Any]:
    alert = alert_store.delete(alert_id)
    return {
        "success": True,
        "message": "Alert deleted successfully",
        "alert": alert.to_wire(),
    }


@app.delete("/api/v1/alerts", tags=["Alerts"])
def clear_alerts() -> Dict[str, Any]:
    count = alert_store.clear_all()
    return {"success": True, "message": f"Cleared {count} alerts"}


# ── Responders ────────────────────────────────────────────────────────────────

@app.put("/api/v1/responders/{responder_id}/location", tags=["Responders"])
def update_responder_location(
    responder_id: str,
    req: UpdateResponderLocationRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Upsert a responder's GPS fix. Called every few seconds by responder apps."""
    location = responder_directory.update_location(db, responder_id, req)
    return {"success": True, "responder": location.to_wire()}


@app.get("/api/v1/responders", tags=["Responders"])
def list_responders(
    role: Optional[ResponderRole] = Query(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    responders = responder_directory.list_on_duty(db, role)
    return {
        "success": True,
        "count": len(responders),
        "responders": [r.to_wire() for r in responders],
    }


@app.get("/api/v1/responders/corridor", tags=["Responders"])
def responders_in_corridor(
    start_lat: float = Query(..., alias="startLat", ge=-90, le=90),
    start_lng: float = Query(..., alias="startLng", ge=-180, le=180),
    end_lat: float = Query(..., alias="endLat", ge=-90, le=90),
    end_lng: float = Query(..., alias="endLng", ge=-180, le=180),
    buffer_km: Optional[float] = Query(None, alias="bufferKm", gt=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    responders = responder_directory.list_in_corridor(
        db,
        GeoLocation(latitude=start_lat, longitude=start_lng),
        GeoLocation(latitude=end_lat, longitude=end_lng),
        buffer_km or settings.corridor_buffer_km,
    )
    return {
        "success": True,
        "count": len(responders),
        "responders": [r.to_wire() for r in responders],
    }


# ── Traffic Lights ────────────────────────────────────────────────────────────

@app.post("/api/v1/traffic-lights/seed", tags=["Traffic Lights"])
def seed_traffic_lights(
    req: SeedTrafficLightsRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    lights = traffic_light_registry.seed(db, req.lights)
    return {"success": True, "count": len(lights), "lights": [light.to_wire() for light in lights]}


@app.post("/api/v1/traffic-lights", tags=["Traffic Lights"])
def create_traffic_light(
    req: CreateTrafficLightRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    light = traffic_light_registry.create(db, req)
    return {"success": True, "light": light.to_wire()}


@app.get("/api/v1/traffic-lights", tags=["Traffic Lights"])
def list_traffic_lights(
    min_lat: Optional[float] = Query(None, alias="minLat", ge=-90, le=90),
    max_lat: Optional[float] = Query(None, alias="maxLat", ge=-90, le=90),
    min_lng: Optional[float] = Query(None, alias="minLng", ge=-180, le=180),
    max_lng: Optional[float] = Query(None, alias="maxLng", ge=-180, le=180),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """All lights, newest first. The box applies only when all four bounds are given."""
    bounds = (min_lat, max_lat, min_lng, max_lng)
    bbox = bounds if all(b is not None for b in bounds) else None
    lights = traffic_light_registry.list_lights(db, bbox)
    return {"success": True, "count": len(lights), "lights": [light.to_wire() for light in lights]}


@app.get("/api/v1/traffic-lights/corridor", tags=["Traffic Lights"])
def traffic_lights_in_corridor(
    start_lat: float = Query(..., alias="startLat", ge=-90, le=90),
    start_lng: float = Query(..., alias="startLng", ge=-180, le=180),
    end_lat: float = Query(..., alias="endLat", ge=-90, le=90),
    end_lng: float = Query(..., alias="endLng", ge=-180, le=180),
    buffer_km: Optional[float] = Query(None, alias="bufferKm", gt=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    lights = traffic_light_registry.list_in_corridor(
        db,
        GeoLocation(latitude=start_lat, longitude=start_lng),
        GeoLocation(latitude=end_lat, longitude=end_lng),
        buffer_km or settings.corridor_buffer_km,
    )
    return {"success": True, "count": len(lights), "lights": [light.to_wire() for light in lights]}


@app.patch("/api/v1/traffic-lights/{light_id}", tags=["Traffic Lights"])
def update_traffic_light(
    light_id: int,
    req: UpdateTrafficLightRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Signal control, e.g. holding a junction green for an ambulance."""
    light = traffic_light_registry.update(db, light_id, req)
    return {"success": True, "light": light.to_wire()}


# ── Ambulances ────────────────────────────────────────────────────────────────

@app.post("/api/v1/ambulances/{driver_name}/position", tags=["Ambulances"])
def report_ambulance_position(
    driver_name: str,
    req: AmbulancePositionRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Run the matching engine for this GPS tick and create any due alerts."""
    created = alert_dispatcher.process(db, driver_name, req)
    journey = alert_dispatcher.journey(driver_name)
    return {
        "success": True,
        "count": len(created),
        "alerts": [a.to_wire() for a in created],
        "cooldownUntil": journey.cooldown_until.isoformat() if journey.cooldown_until else None,
    }


@app.delete("/api/v1/ambulances/{driver_name}/journey", tags=["Ambulances"])
def end_journey(driver_name: str) -> Dict[str, Any]:
    if not alert_dispatcher.end_journey(driver_name):
        raise HTTPException(status_code=404, detail="No active journey for driver")
    return {"success": True, "message": f"Journey ended for {driver_name}"}


# ── Directions ────────────────────────────────────────────────────────────────

@app.get("/api/v1/directions", tags=["Directions"])
def get_directions(
    start_lat: float = Query(..., alias="startLat", ge=-90, le=90),
    start_lng: float = Query(..., alias="startLng", ge=-180, le=180),
    end_lat: float = Query(..., alias="endLat", ge=-90, le=90),
    end_lng: float = Query(..., alias="endLng", ge=-180, le=180),
) -> Dict[str, Any]:
    """Proxy to the directions provider. Provider failure → 502."""
    try:
        route = directions_client.get_route(
            GeoLocation(latitude=start_lat, longitude=start_lng),
            GeoLocation(latitude=end_lat, longitude=end_lng),
        )
    except TransientIOError as exc:
        logger.warning(f"Directions unavailable: {exc}")
        raise
    return {"success": True, "route": route.to_wire()}


# ── WebSocket Endpoints ───────────────────────────────────────────────────────

@app.websocket("/ws/responder/{responder_id}")
async def responder_websocket(websocket: WebSocket, responder_id: str) -> None:
    """
    Persistent connection for responder apps. Receives `alert:new`.
    Responders may also send `{"type": "alert:respond", ...}` messages,
    which follow the same path as POST /alerts/respond.
    """
    await ws_manager.connect_responder(websocket, responder_id)
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                data = None
            if not isinstance(data, dict):
                await websocket.send_json({
                    "type": "alert:respond:result",
                    "success": False,
                    "message": "Messages must be JSON objects",
                })
                continue
            if data.get("type") != "alert:respond":
                continue
            try:
                req = RespondRequest.model_validate(data)
                alert = _record_response(req)
                await websocket.send_json({
                    "type": "alert:respond:result",
                    "success": True,
                    "alert": alert.to_wire(),
                })
            except (FastlaneError, ValidationError) as exc:
                await websocket.send_json({
                    "type": "alert:respond:result",
                    "success": False,
                    "message": str(exc),
                })
    except WebSocketDisconnect:
        logger.info(f"Responder {responder_id} disconnected")
    finally:
        ws_manager.disconnect_responder(responder_id, websocket)


@app.websocket("/ws/driver/{driver_name}")
async def driver_websocket(websocket: WebSocket, driver_name: str) -> None:
    """Persistent connection for ambulance drivers. Receives `alert:responded`."""
    await ws_manager.connect_driver(websocket, driver_name)
    try:
        while True:
            # Keep connection alive; drivers are receive-only
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Driver {driver_name} disconnected")
    finally:
        ws_manager.disconnect_driver(driver_name, websocket)


# ── Entry point ───────────────────────────────────────────────────────────────

def run_server() -> None:
    uvicorn.run(
        "fastlane.services.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment.value == "dev",
    )


if __name__ == "__main__":
    run_server()
