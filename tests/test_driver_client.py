"""
Tests — Driver Polling Client

Tier 2: Integration with the HTTP layer mocked — a requests session
stub stands in for the Fastlane API.
"""

from __future__ import annotations

import threading
from typing import List
from unittest.mock import MagicMock

import pytest
import requests

from fastlane.common.errors import TransientIOError
from fastlane.common.events import ResponseEvent
from fastlane.services.correlation import ResponseCorrelator
from fastlane.services.driver_client import DriverPoller

ACCEPTED = {
    "id": 4,
    "driverName": "Asha",
    "policeName": "Officer K",
    "status": "acknowledged",
    "trafficStatus": "accepted",
    "policeResponse": "Route approved. You can proceed.",
}


def _session(payload=None, exc: Exception | None = None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if exc is not None:
        session.get.side_effect = exc
    else:
        response = MagicMock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        session.get.return_value = response
    return session


def _poller(session: MagicMock, **kwargs) -> DriverPoller:
    return DriverPoller(
        ResponseCorrelator("Asha"),
        base_url="http://fastlane.test/",
        interval_s=0.01,
        session=session,
        **kwargs,
    )


class TestDriverPoller:
    def test_fetch_queries_by_driver(self) -> None:
        session = _session({"success": True, "count": 1, "alerts": [ACCEPTED]})
        assert _poller(session).fetch() == [ACCEPTED]
        session.get.assert_called_once_with(
            "http://fastlane.test/api/v1/alerts",
            params={"driverName": "Asha"},
            timeout=5.0,
        )

    def test_fetch_wraps_transport_errors(self) -> None:
        with pytest.raises(TransientIOError):
            _poller(_session(exc=requests.ConnectionError("refused"))).fetch()

    def test_fetch_rejects_unsuccessful_body(self) -> None:
        with pytest.raises(TransientIOError):
            _poller(_session({"success": False, "message": "boom"})).fetch()

    @pytest.mark.parametrize("body", [["not", "a", "dict"], "ok", None])
    def test_fetch_rejects_non_object_body(self, body) -> None:
        with pytest.raises(TransientIOError):
            _poller(_session(body)).fetch()

    def test_fetch_rejects_malformed_alert_list(self) -> None:
        with pytest.raises(TransientIOError):
            _poller(_session({"success": True, "alerts": "oops"})).fetch()

    def test_bad_body_does_not_stop_polling(self) -> None:
        session = _session([ACCEPTED])
        poller = _poller(session)
        assert poller.poll_once() == []

        session.get.return_value.json.return_value = {"success": True, "alerts": ["oops", ACCEPTED]}
        assert [e.alert_id for e in poller.poll_once()] == ["4"]

    def test_poll_once_emits_each_response_once(self) -> None:
        seen: List[ResponseEvent] = []
        poller = _poller(_session({"success": True, "alerts": [ACCEPTED]}), on_event=seen.append)

        assert len(poller.poll_once()) == 1
        assert poller.poll_once() == []
        assert [e.alert_id for e in seen] == ["4"]

    def test_poll_failure_returns_no_events(self) -> None:
        poller = _poller(_session(exc=requests.Timeout("slow")))
        assert poller.poll_once() == []

    def test_handler_errors_are_contained(self) -> None:
        def boom(event: ResponseEvent) -> None:
            raise RuntimeError("ui crashed")

        poller = _poller(_session({"success": True, "alerts": [ACCEPTED]}), on_event=boom)
        assert len(poller.poll_once()) == 1

    def test_run_stops_when_event_set(self) -> None:
        stop = threading.Event()
        session = _session({"success": True, "alerts": []})
        session.get.side_effect = lambda *a, **kw: (stop.set(), session.get.return_value)[1]

        _poller(session).run(stop)

        assert session.get.call_count == 1
