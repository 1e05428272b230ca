"""
Fastlane — Traffic Light Registry

Persistent signals the corridor view overlays on an ambulance route.
Lights are seeded in bulk or created one by one, read back by bounding
box, and queried along a start → end segment: a bounding-box prefilter
in SQL, then the exact point-to-segment distance check.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from fastlane.common.errors import TrafficLightNotFoundError, TrafficLightValidationError
from fastlane.common.schemas import (
    CreateTrafficLightRequest,
    GeoLocation,
    JunctionType,
    SignalPhase,
    SignalTiming,
    TrafficLight,
    UpdateTrafficLightRequest,
)
from fastlane.common.utils import bounding_box, within_corridor
from fastlane.database.models import TrafficLightRecord

logger = logging.getLogger(__name__)

BoundingBox = Tuple[float, float, float, float]  # (min_lat, max_lat, min_lng, max_lng)


def _to_light(record: TrafficLightRecord) -> TrafficLight:
    return TrafficLight(
        id=record.id,
        name=record.name,
        latitude=record.latitude,
        longitude=record.longitude,
        junction_type=JunctionType(record.junction_type),
        roads=list(record.roads or []),
        city=record.city,
        status=SignalPhase(record.status),
        current_phase=SignalPhase(record.current_phase),
        time_remaining=record.time_remaining,
        is_emergency=bool(record.is_emergency),
        timing=SignalTiming(
            red=record.timing_red,
            yellow=record.timing_yellow,
            green=record.timing_green,
        ),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _new_record(req: CreateTrafficLightRequest) -> TrafficLightRecord:
    return TrafficLightRecord(
        name=req.name.strip(),
        latitude=req.latitude,
        longitude=req.longitude,
        junction_type=req.junction_type.value,
        roads=list(req.roads),
        city=req.city,
        status=req.status.value,
        current_phase=req.current_phase.value,
        time_remaining=req.time_remaining,
        is_emergency=req.is_emergency,
        timing_red=req.timing.red,
        timing_yellow=req.timing.yellow,
        timing_green=req.timing.green,
    )


class TrafficLightRegistry:
    """CRUD and spatial queries over `traffic_lights`."""

    def create(self, db: Session, req: CreateTrafficLightRequest) -> TrafficLight:
        record = _new_record(req)
        db.add(record)
        db.commit()
        db.refresh(record)
        logger.info(f"Traffic light #{record.id} '{record.name}' registered")
        return _to_light(record)

    def seed(self, db: Session, lights: Iterable[CreateTrafficLightRequest]) -> List[TrafficLight]:
        """Insert a batch in one transaction. An empty batch is rejected."""
        records = [_new_record(req) for req in lights]
        if not records:
            raise TrafficLightValidationError("lights array required")
        db.add_all(records)
        db.commit()
        for record in records:
            db.refresh(record)
        logger.info(f"Seeded {len(records)} traffic lights")
        return [_to_light(r) for r in records]

    def update(self, db: Session, light_id: int, req: UpdateTrafficLightRequest) -> TrafficLight:
        record = db.get(TrafficLightRecord, light_id)
        if record is None:
            raise TrafficLightNotFoundError(light_id)

        for key, value in req.model_dump(exclude_unset=True).items():
            if value is None and key != "city":
                continue
            if key == "timing":
                record.timing_red = req.timing.red
                record.timing_yellow = req.timing.yellow
                record.timing_green = req.timing.green
            elif key in ("junction_type", "status", "current_phase"):
                setattr(record, key, getattr(req, key).value)
            else:
                setattr(record, key, value)
        db.commit()
        db.refresh(record)

        logger.info(
            f"Traffic light #{record.id} now {record.status}",
            extra={"context": {"light_id": record.id, "is_emergency": bool(record.is_emergency)}},
        )
        return _to_light(record)

    def list_lights(self, db: Session, bbox: Optional[BoundingBox] = None) -> List[TrafficLight]:
        """All lights, newest first; restricted to `bbox` when given."""
        q = db.query(TrafficLightRecord)
        if bbox is not None:
            min_lat, max_lat, min_lng, max_lng = bbox
            q = q.filter(
                TrafficLightRecord.latitude >= min_lat,
                TrafficLightRecord.latitude <= max_lat,
                TrafficLightRecord.longitude >= min_lng,
                TrafficLightRecord.longitude <= max_lng,
            )
        return [_to_light(r) for r in q.order_by(TrafficLightRecord.id.desc()).all()]

    def list_in_corridor(
        self,
        db: Session,
        start: GeoLocation,
        end: GeoLocation,
        buffer_km: float,
    ) -> List[TrafficLight]:
        """Lights within `buffer_km` of the straight start → end segment."""
        candidates = self.list_lights(db, bounding_box(start, end, buffer_km))
        return within_corridor(candidates, start, end, buffer_km)


# Global singleton
traffic_light_registry = TrafficLightRegistry()
