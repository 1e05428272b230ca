"""
Tests — Directions Client

Tier 2: Integration with the OSRM HTTP API mocked out.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from fastlane.common.errors import TransientIOError
from fastlane.common.schemas import GeoLocation
from fastlane.services.directions import DirectionsClient

START = GeoLocation(latitude=17.6868, longitude=83.2185)
END = GeoLocation(latitude=17.7150, longitude=83.2950)

OSRM_RESPONSE = {
    "code": "Ok",
    "routes": [
        {
            "distance": 9876.0,
            "duration": 1230.0,
            "geometry": {"coordinates": [[83.2185, 17.6868], [83.25, 17.70], [83.2950, 17.7150]]},
            "legs": [
                {
                    "steps": [
                        {"name": "Beach Road", "distance": 0, "maneuver": {"type": "depart"}},
                        {
                            "name": "Dabagardens Road",
                            "distance": 412.4,
                            "maneuver": {"type": "turn", "modifier": "left"},
                        },
                        {"name": "", "distance": 0, "maneuver": {"type": "arrive"}},
                    ]
                }
            ],
        }
    ],
}


def _response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestDirectionsClient:
    @patch("fastlane.services.directions.requests.get")
    def test_route_summary(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response(OSRM_RESPONSE)
        client = DirectionsClient(base_url="http://osrm.test/route/v1/driving", timeout_s=2.0)

        route = client.get_route(START, END)

        url = mock_get.call_args.args[0]
        assert url == "http://osrm.test/route/v1/driving/83.2185,17.6868;83.295,17.715"
        assert route.distance_km == 9.88
        assert route.duration_min == 20.5
        assert route.coordinates[1] == GeoLocation(latitude=17.70, longitude=83.25)
        assert route.turn_instructions == [
            "Head out on Beach Road",
            "Turn left onto Dabagardens Road (412 m)",
            "Arrive at destination",
        ]

    @patch("fastlane.services.directions.time.sleep")
    @patch("fastlane.services.directions.requests.get")
    def test_retries_then_succeeds(self, mock_get: MagicMock, mock_sleep: MagicMock) -> None:
        mock_get.side_effect = [requests.ConnectionError("down"), _response(OSRM_RESPONSE)]
        route = DirectionsClient(base_url="http://osrm.test").get_route(START, END)
        assert route.distance_km == 9.88
        mock_sleep.assert_called_once_with(1)

    @patch("fastlane.services.directions.time.sleep")
    @patch("fastlane.services.directions.requests.get")
    def test_gives_up_after_three_attempts(self, mock_get: MagicMock, mock_sleep: MagicMock) -> None:
        mock_get.side_effect = requests.Timeout("slow")
        with pytest.raises(TransientIOError):
            DirectionsClient(base_url="http://osrm.test").get_route(START, END)
        assert mock_get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("fastlane.services.directions.requests.get")
    def test_no_route(self, mock_get: MagicMock) -> None:
        mock_get.return_value = _response({"code": "NoRoute", "routes": []})
        with pytest.raises(TransientIOError):
            DirectionsClient(base_url="http://osrm.test").get_route(START, END)
