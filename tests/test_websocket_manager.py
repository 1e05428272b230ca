"""
Tests — WebSocket Connection Manager

Tier 1: Fan-out semantics with in-process fake sockets. A failing
client is dropped without affecting delivery to the others.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastlane.common.events import ALERT_NEW
from fastlane.common.schemas import Alert, GeoLocation
from fastlane.services.websocket_manager import ConnectionManager


class FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: List[Dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        self.sent.append(data)


def _alert() -> Alert:
    return Alert(
        id=3,
        driver_name="Asha",
        location=GeoLocation(latitude=17.69, longitude=83.21),
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
    )


class TestConnectionManager:
    def test_connect_accepts_and_registers(self) -> None:
        manager = ConnectionManager()
        responder, driver = FakeSocket(), FakeSocket()

        async def scenario() -> None:
            await manager.connect_responder(responder, "OFF-1")
            await manager.connect_driver(driver, "Asha")

        asyncio.run(scenario())
        assert responder.accepted and driver.accepted
        assert manager.responder_connections == {"OFF-1": responder}
        assert manager.driver_connections == {"asha": driver}

        manager.disconnect_driver("ASHA")
        assert manager.driver_connections == {}

    def test_broadcast_drops_failed_clients(self) -> None:
        manager = ConnectionManager()
        healthy, broken = FakeSocket(), FakeSocket(fail=True)
        manager.responder_connections = {"OFF-1": healthy, "OFF-2": broken}

        delivered = asyncio.run(manager.broadcast_to_responders({"type": ALERT_NEW}))

        assert delivered == 1
        assert healthy.sent == [{"type": ALERT_NEW}]
        assert list(manager.responder_connections) == ["OFF-1"]

    def test_broadcast_to_drivers(self) -> None:
        manager = ConnectionManager()
        a, b = FakeSocket(), FakeSocket()
        manager.driver_connections = {"asha": a, "ravi": b}
        assert asyncio.run(manager.broadcast_to_drivers({"type": "alert:responded"})) == 2

    def test_sync_publish_without_loop_is_a_noop(self) -> None:
        manager = ConnectionManager()
        manager.responder_connections = {"OFF-1": FakeSocket()}
        manager.publish_alert_created(_alert())
        manager.publish_alert_responded(_alert())
        assert manager.responder_connections["OFF-1"].sent == []

    def test_sync_publish_delivers_on_running_loop(self) -> None:
        manager = ConnectionManager()
        socket = FakeSocket()
        manager.responder_connections = {"OFF-1": socket}

        async def scenario() -> None:
            manager.set_event_loop(asyncio.get_running_loop())
            manager.publish_alert_created(_alert())
            for _ in range(10):
                if socket.sent:
                    break
                await asyncio.sleep(0.01)

        asyncio.run(scenario())
        assert len(socket.sent) == 1
        assert socket.sent[0]["type"] == ALERT_NEW
        assert socket.sent[0]["alert"]["id"] == 3

    def test_stale_socket_does_not_evict_reconnect(self) -> None:
        manager = ConnectionManager()
        first, second = FakeSocket(), FakeSocket()

        async def scenario() -> None:
            await manager.connect_driver(first, "Asha")
            await manager.connect_driver(second, "asha")

        asyncio.run(scenario())
        manager.disconnect_driver("Asha", first)
        assert manager.driver_connections == {"asha": second}

        manager.disconnect_driver("Asha", second)
        assert manager.driver_connections == {}

    def test_failed_send_keeps_newer_responder_socket(self) -> None:
        manager = ConnectionManager()
        replacement = FakeSocket()

        class Reconnecting(FakeSocket):
            async def send_json(self, data: Dict[str, Any]) -> None:
                manager.responder_connections["OFF-1"] = replacement
                raise ConnectionResetError("client went away")

        manager.responder_connections = {"OFF-1": Reconnecting()}
        asyncio.run(manager.broadcast_to_responders({"type": ALERT_NEW}))
        assert manager.responder_connections == {"OFF-1": replacement}
