"""
Fastlane — Driver Polling Client

Ambulance-side loop: polls GET /api/v1/alerts?driverName=<name> every
2 seconds and feeds the result through the ResponseCorrelator. Push is
an optimisation only, so this loop alone must surface every decision.

A failed poll never escapes `poll_once`; the next tick simply retries.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import requests

from fastlane.common.errors import TransientIOError
from fastlane.common.events import ResponseEvent
from fastlane.config import get_settings
from fastlane.services.correlation import ResponseCorrelator

logger = logging.getLogger(__name__)
settings = get_settings()

_TIMEOUT = 5.0


class DriverPoller:
    """Polls the alert endpoint for one driver and emits new response events."""

    def __init__(
        self,
        correlator: ResponseCorrelator,
        base_url: Optional[str] = None,
        interval_s: Optional[float] = None,
        on_event: Optional[Callable[[ResponseEvent], None]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.correlator = correlator
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self.interval_s = interval_s or settings.driver_poll_interval_s
        self.on_event = on_event
        self._session = session or requests.Session()

    @property
    def driver_name(self) -> str:
        return self.correlator.driver_name

    def fetch(self) -> List[dict]:
        """GET the driver's alerts. Raises TransientIOError on any transport/HTTP problem."""
        try:
            resp = self._session.get(
                f"{self._base_url}/api/v1/alerts",
                params={"driverName": self.driver_name},
                timeout=_TIMEOUT,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise TransientIOError(f"Alert poll failed for {self.driver_name}: {exc}") from exc

        if not isinstance(data, dict):
            raise TransientIOError(f"Alert poll for {self.driver_name} returned {type(data).__name__}, not an object")
        if not data.get("success"):
            raise TransientIOError(f"Alert poll rejected: {data.get('message')}")
        alerts = data.get("alerts") or []
        if not isinstance(alerts, list):
            raise TransientIOError(f"Alert poll for {self.driver_name} returned malformed alerts")
        return alerts

    def poll_once(self) -> List[ResponseEvent]:
        try:
            alerts = self.fetch()
        except TransientIOError as exc:
            logger.warning(str(exc))
            return []

        events = self.correlator.process(alerts)
        for event in events:
            if self.on_event is None:
                continue
            try:
                self.on_event(event)
            except Exception:
                logger.exception(f"Response handler failed for {event.response_id}")
        return events

    def run(self, stop: threading.Event) -> None:
        """Poll until `stop` is set."""
        logger.info(f"Polling responses for {self.driver_name} every {self.interval_s}s")
        while not stop.is_set():
            self.poll_once()
            stop.wait(self.interval_s)
        logger.info(f"Stopped polling for {self.driver_name}")
