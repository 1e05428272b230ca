"""
Tests — Pydantic Schema Validation

Tier 1: Ensures all domain models enforce type constraints correctly
and speak camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from fastlane.common.events import ALERT_RESPONDED, AlertRespondedEvent
from fastlane.common.schemas import (
    Alert,
    AlertStatus,
    CreateAlertRequest,
    GeoLocation,
    PolledAlert,
    RespondRequest,
    TrafficStatus,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _alert(**overrides) -> Alert:
    fields = dict(
        id=1,
        driver_name="Asha",
        location=GeoLocation(latitude=17.69, longitude=83.21),
        created_at=NOW,
    )
    fields.update(overrides)
    return Alert(**fields)


class TestGeoLocation:
    def test_valid_location(self) -> None:
        loc = GeoLocation(latitude=17.6868, longitude=83.2185)
        assert loc.latitude == 17.6868

    def test_invalid_latitude(self) -> None:
        with pytest.raises(ValidationError):
            GeoLocation(latitude=91.0, longitude=0.0)

    def test_invalid_longitude(self) -> None:
        with pytest.raises(ValidationError):
            GeoLocation(latitude=0.0, longitude=181.0)


class TestLegacyStatusValues:
    @pytest.mark.parametrize("raw", ["responded", "cleared", "acknowledged", "ACKNOWLEDGED"])
    def test_alert_status_normalizes_to_acknowledged(self, raw: str) -> None:
        assert AlertStatus.normalize(raw) == AlertStatus.ACKNOWLEDGED

    def test_pending_passes_through(self) -> None:
        assert AlertStatus.normalize("pending") == AlertStatus.PENDING

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("clear", TrafficStatus.ACCEPTED),
            ("busy", TrafficStatus.REJECTED),
            ("accepted", TrafficStatus.ACCEPTED),
            ("Rejected", TrafficStatus.REJECTED),
        ],
    )
    def test_traffic_status_normalizes(self, raw: str, expected: TrafficStatus) -> None:
        assert TrafficStatus.normalize(raw) == expected

    def test_unknown_traffic_status_raises(self) -> None:
        with pytest.raises(ValueError):
            TrafficStatus.normalize("maybe")


class TestAlert:
    def test_is_frozen(self) -> None:
        alert = _alert()
        with pytest.raises(ValidationError):
            alert.status = AlertStatus.ACKNOWLEDGED

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            _alert(colour="red")

    def test_wire_format_is_camel_case(self) -> None:
        wire = _alert(police_id="OFF-1", distance_m=850.0).to_wire()
        assert wire["driverName"] == "Asha"
        assert wire["policeId"] == "OFF-1"
        assert wire["distance"] == 850.0
        assert wire["status"] == "pending"
        assert wire["trafficStatus"] is None
        assert wire["forAllPolice"] is True
        assert wire["startAddress"] == "Unknown"

    def test_effective_timestamp_prefers_client_timestamp(self) -> None:
        client_ts = NOW - timedelta(minutes=3)
        assert _alert(timestamp=client_ts).effective_timestamp == client_ts
        assert _alert().effective_timestamp == NOW

    def test_belongs_to_is_case_insensitive(self) -> None:
        alert = _alert()
        assert alert.belongs_to("asha")
        assert alert.belongs_to("  ASHA ")
        assert not alert.belongs_to("Ravi")


class TestRequests:
    def test_create_accepts_camel_case_and_numeric_police_id(self) -> None:
        req = CreateAlertRequest.model_validate({
            "driverName": "Asha",
            "policeId": 42,
            "location": {"latitude": 17.69, "longitude": 83.21},
            "somethingElse": True,
        })
        assert req.driver_name == "Asha"
        assert req.police_id == "42"

    def test_respond_parses_string_id_once(self) -> None:
        req = RespondRequest.model_validate({"alertId": "5", "trafficStatus": "accepted"})
        assert req.alert_id == 5
        assert req.traffic_status == TrafficStatus.ACCEPTED

    def test_respond_rejects_non_numeric_id(self) -> None:
        with pytest.raises(ValidationError):
            RespondRequest.model_validate({"alertId": "abc", "trafficStatus": "accepted"})

    def test_respond_accepts_legacy_status_and_officer_alias(self) -> None:
        req = RespondRequest.model_validate({
            "alertId": 3,
            "trafficStatus": "busy",
            "policeOfficer": "Officer K",
        })
        assert req.traffic_status == TrafficStatus.REJECTED
        assert req.officer_name == "Officer K"

    def test_polled_alert_is_lenient(self) -> None:
        polled = PolledAlert.model_validate({
            "id": "7",
            "status": "cleared",
            "policeId": 12,
            "unexpected": [1, 2, 3],
        })
        assert polled.status == "cleared"
        assert polled.police_id == "12"
        assert polled.traffic_status is None


class TestEvents:
    def test_responded_event_carries_decision(self) -> None:
        alert = _alert(
            status=AlertStatus.ACKNOWLEDGED,
            traffic_status=TrafficStatus.ACCEPTED,
            police_response="Route approved. You can proceed.",
        )
        wire = AlertRespondedEvent.from_alert(alert).to_wire()
        assert wire["type"] == ALERT_RESPONDED
        assert wire["driverName"] == "Asha"
        assert wire["alertId"] == 1
        assert wire["trafficStatus"] == "accepted"
        assert wire["alert"]["policeResponse"] == "Route approved. You can proceed."
