"""
Fastlane — WebSocket Connection Manager

Manages real-time WebSocket connections for:
  - Responder apps (police / toll) — receive `alert:new`
  - Ambulance drivers — receive `alert:responded`

Push is best-effort. Polling the alert store is the correctness path, so
a failed send only drops the connection and is logged; it never reaches
the caller that mutated the store.

Provides both async methods (for WebSocket endpoints) and sync-safe
methods (for the sync HTTP handlers running on the thread pool).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from fastapi import WebSocket

from fastlane.common.events import AlertCreatedEvent, AlertRespondedEvent
from fastlane.common.schemas import Alert

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Central hub for all active WebSocket connections."""

    def __init__(self) -> None:
        self.responder_connections: Dict[str, WebSocket] = {}
        self.driver_connections: Dict[str, WebSocket] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called at startup to capture the running event loop."""
        self._loop = loop

    # ── Connection lifecycle ──────────────────────────────────────────────────

    async def connect_responder(self, websocket: WebSocket, responder_id: str) -> None:
        await websocket.accept()
        self.responder_connections[responder_id] = websocket
        logger.info(f"Responder {responder_id} connected via WebSocket")

    async def connect_driver(self, websocket: WebSocket, driver_name: str) -> None:
        await websocket.accept()
        self.driver_connections[driver_name.lower()] = websocket
        logger.info(f"Driver {driver_name} connected via WebSocket")

    def disconnect_responder(self, responder_id: str, websocket: Optional[WebSocket] = None) -> None:
        """Drop the responder's socket; with `websocket`, only if it is still the registered one."""
        self._release(self.responder_connections, responder_id, websocket)

    def disconnect_driver(self, driver_name: str, websocket: Optional[WebSocket] = None) -> None:
        self._release(self.driver_connections, driver_name.lower(), websocket)

    @staticmethod
    def _release(connections: Dict[str, WebSocket], key: str, websocket: Optional[WebSocket]) -> None:
        # a reconnect under the same key replaces the entry; the old socket must not evict it
        if websocket is None or connections.get(key) is websocket:
            connections.pop(key, None)

    # ── Async fan-out ─────────────────────────────────────────────────────────

    async def broadcast_to_responders(self, data: dict) -> int:
        delivered = 0
        for rid in list(self.responder_connections.keys()):
            ws = self.responder_connections.get(rid)
            if ws:
                try:
                    await ws.send_json(data)
                    delivered += 1
                except Exception as exc:
                    logger.warning(f"Responder WS send failed ({rid}): {exc}")
                    self.disconnect_responder(rid, ws)
        return delivered

    async def broadcast_to_drivers(self, data: dict) -> int:
        delivered = 0
        for name in list(self.driver_connections.keys()):
            ws = self.driver_connections.get(name)
            if ws:
                try:
                    await ws.send_json(data)
                    delivered += 1
                except Exception as exc:
                    logger.warning(f"Driver WS send failed ({name}): {exc}")
                    self.disconnect_driver(name, ws)
        return delivered

    # ── Sync-safe sends (called from thread-pool handlers) ────────────────────

    def broadcast_to_responders_sync(self, data: dict) -> None:
        """Fire-and-forget from a sync thread."""
        if self._loop and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(
                self.broadcast_to_responders(data), self._loop
            )

    def broadcast_to_drivers_sync(self, data: dict) -> None:
        """Fire-and-forget from a sync thread."""
        if self._loop and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(
                self.broadcast_to_drivers(data), self._loop
            )

    # ── Alert events ──────────────────────────────────────────────────────────

    def publish_alert_created(self, alert: Alert) -> None:
        """`alert:new` to every responder. Errors are logged, never raised."""
        try:
            self.broadcast_to_responders_sync(AlertCreatedEvent.from_alert(alert).to_wire())
        except Exception:
            logger.exception(f"alert:new fan-out failed for alert #{alert.id}")

    def publish_alert_responded(self, alert: Alert) -> None:
        """`alert:responded` to every driver. Errors are logged, never raised."""
        try:
            self.broadcast_to_drivers_sync(AlertRespondedEvent.from_alert(alert).to_wire())
        except Exception:
            logger.exception(f"alert:responded fan-out failed for alert #{alert.id}")


# Global singleton shared across the entire app
ws_manager = ConnectionManager()
