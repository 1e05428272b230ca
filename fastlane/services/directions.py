"""
Fastlane — Directions Client

Fetches a road-snapped route between two points from OSRM (Open Source
Routing Machine) and condenses it into a RouteSummary: coordinates,
distance, duration and human-readable turn instructions.

Retries transport failures with exponential backoff; when the provider
stays unreachable a TransientIOError is raised for the caller to log.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

import requests

from fastlane.common.errors import TransientIOError
from fastlane.common.schemas import GeoLocation, RouteSummary
from fastlane.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_ATTEMPTS = 3


def _instruction(step: Dict[str, Any]) -> str:
    maneuver = step.get("maneuver", {})
    kind = maneuver.get("type", "continue")
    modifier = maneuver.get("modifier")
    road = step.get("name") or "the road"
    distance = round(step.get("distance", 0))

    if kind == "depart":
        return f"Head out on {road}"
    if kind == "arrive":
        return "Arrive at destination"
    verb = kind.replace("_", " ").capitalize()
    if modifier:
        verb = f"{verb} {modifier}"
    return f"{verb} onto {road} ({distance} m)"


class DirectionsClient:
    """Requests routes from an OSRM-compatible HTTP API."""

    def __init__(self, base_url: str | None = None, timeout_s: float | None = None) -> None:
        self._base_url = (base_url or settings.directions_base_url).rstrip("/")
        self._timeout = timeout_s or settings.directions_timeout_s

    def get_route(self, start: GeoLocation, end: GeoLocation) -> RouteSummary:
        # OSRM format: {lon},{lat};{lon},{lat}
        coordinates = f"{start.longitude},{start.latitude};{end.longitude},{end.latitude}"
        url = f"{self._base_url}/{coordinates}"
        params = {"overview": "full", "geometries": "geojson", "steps": "true"}

        data = self._get_with_retry(url, params)
        routes = data.get("routes") or []
        if data.get("code", "Ok") != "Ok" or not routes:
            raise TransientIOError(f"No route returned ({data.get('code')})")

        route = routes[0]
        steps: List[Dict[str, Any]] = [
            step for leg in route.get("legs", []) for step in leg.get("steps", [])
        ]
        return RouteSummary(
            # GeoJSON pairs are [lon, lat]
            coordinates=[
                GeoLocation(latitude=c[1], longitude=c[0])
                for c in route["geometry"]["coordinates"]
            ],
            distance_km=round(route.get("distance", 0) / 1000, 2),
            duration_min=round(route.get("duration", 0) / 60, 1),
            turn_instructions=[_instruction(s) for s in steps],
        )

    def _get_with_retry(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        for attempt in range(_ATTEMPTS):
            try:
                resp = requests.get(url, params=params, timeout=self._timeout)
                resp.raise_for_status()
                return resp.json()
            except (requests.RequestException, ValueError) as exc:
                last = attempt == _ATTEMPTS - 1
                delay = 2 ** attempt
                logger.warning(
                    f"Directions attempt {attempt + 1}/{_ATTEMPTS} failed: {exc}. "
                    + ("Giving up." if last else f"Retrying in {delay}s…")
                )
                if last:
                    raise TransientIOError(f"Directions provider unavailable: {exc}") from exc
                time.sleep(delay)
        raise TransientIOError("Directions provider unavailable")


# Global singleton
directions_client = DirectionsClient()
