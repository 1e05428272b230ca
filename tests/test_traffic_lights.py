"""
Tests — Traffic Light Registry

Tier 1: Registry CRUD and spatial queries against an in-memory SQLite
session.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from fastlane.common.errors import TrafficLightNotFoundError, TrafficLightValidationError
from fastlane.common.schemas import (
    CreateTrafficLightRequest,
    GeoLocation,
    JunctionType,
    SignalPhase,
    UpdateTrafficLightRequest,
)
from fastlane.services.traffic_lights import TrafficLightRegistry

START = GeoLocation(latitude=17.70, longitude=83.20)
END = GeoLocation(latitude=17.70, longitude=83.30)


def _light(name: str, lat: float, lng: float, **fields) -> CreateTrafficLightRequest:
    return CreateTrafficLightRequest(name=name, latitude=lat, longitude=lng, **fields)


@pytest.fixture
def registry() -> TrafficLightRegistry:
    return TrafficLightRegistry()


class TestCreateAndSeed:
    def test_create_applies_defaults(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        light = registry.create(db_session, _light("Jagadamba Junction", 17.711, 83.301))
        assert light.id >= 1
        assert light.junction_type == JunctionType.THREE_WAY
        assert light.status == SignalPhase.RED
        assert (light.timing.red, light.timing.yellow, light.timing.green) == (30, 5, 25)
        assert light.roads == []
        assert light.created_at is not None

    def test_seed_inserts_batch(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        lights = registry.seed(db_session, [
            _light("Siripuram", 17.720, 83.315, roads=["VIP Road"], city="Visakhapatnam"),
            _light("RTC Complex", 17.726, 83.306, junction_type=JunctionType.FOUR_WAY),
        ])
        assert [light.name for light in lights] == ["Siripuram", "RTC Complex"]
        assert lights[0].roads == ["VIP Road"]
        assert lights[1].junction_type == JunctionType.FOUR_WAY
        assert len(registry.list_lights(db_session)) == 2

    def test_empty_seed_is_rejected(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        with pytest.raises(TrafficLightValidationError):
            registry.seed(db_session, [])


class TestQueries:
    def test_newest_first(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        first = registry.create(db_session, _light("A", 17.70, 83.25))
        second = registry.create(db_session, _light("B", 17.71, 83.26))
        assert [light.id for light in registry.list_lights(db_session)] == [second.id, first.id]

    def test_bounding_box(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        inside = registry.create(db_session, _light("Inside", 17.70, 83.25))
        registry.create(db_session, _light("Outside", 17.80, 83.35))
        found = registry.list_lights(db_session, (17.69, 17.71, 83.20, 83.30))
        assert [light.id for light in found] == [inside.id]

    def test_corridor_uses_segment_distance(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        near = registry.create(db_session, _light("Near", 17.705, 83.25))     # ~555 m off the segment
        registry.create(db_session, _light("Far", 17.75, 83.25))              # ~5.5 km
        registry.create(db_session, _light("Past end", 17.70, 83.40))         # beyond the end point
        found = registry.list_in_corridor(db_session, START, END, buffer_km=1.0)
        assert [light.id for light in found] == [near.id]


class TestUpdate:
    def test_partial_update(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        light = registry.create(db_session, _light("Maddilapalem", 17.737, 83.319, city="Visakhapatnam"))
        updated = registry.update(db_session, light.id, UpdateTrafficLightRequest(
            status=SignalPhase.GREEN, current_phase=SignalPhase.GREEN, is_emergency=True,
        ))
        assert updated.status == SignalPhase.GREEN
        assert updated.is_emergency is True
        assert updated.name == "Maddilapalem"
        assert updated.city == "Visakhapatnam"

    def test_update_timing(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        light = registry.create(db_session, _light("Maddilapalem", 17.737, 83.319))
        updated = registry.update(
            db_session, light.id, UpdateTrafficLightRequest.model_validate({"timing": {"green": 60}})
        )
        assert (updated.timing.red, updated.timing.yellow, updated.timing.green) == (30, 5, 60)

    def test_unknown_light(self, registry: TrafficLightRegistry, db_session: Session) -> None:
        with pytest.raises(TrafficLightNotFoundError):
            registry.update(db_session, 404, UpdateTrafficLightRequest(status=SignalPhase.GREEN))
