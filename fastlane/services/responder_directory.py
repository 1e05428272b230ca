"""
Fastlane — Responder Directory

Thin service over `responder_locations`: responders push their GPS fix,
the matching engine and the corridor query read it back as
`ResponderLocation` records.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from fastlane.common.schemas import (
    GeoLocation,
    ResponderLocation,
    ResponderRole,
    UpdateResponderLocationRequest,
)
from fastlane.common.utils import within_corridor
from fastlane.database.models import ResponderLocationRecord

logger = logging.getLogger(__name__)


def _to_location(record: ResponderLocationRecord) -> ResponderLocation:
    return ResponderLocation(
        id=record.responder_id,
        name=record.name,
        role=ResponderRole(record.role),
        latitude=record.latitude,
        longitude=record.longitude,
        updated_at=record.updated_at,
    )


class ResponderDirectory:
    """Upserts and queries responder positions."""

    def update_location(
        self,
        db: Session,
        responder_id: str,
        req: UpdateResponderLocationRequest,
    ) -> ResponderLocation:
        record = db.query(ResponderLocationRecord).filter_by(responder_id=responder_id).first()
        if record is None:
            record = ResponderLocationRecord(responder_id=responder_id)
            db.add(record)
        record.name = req.name
        record.role = req.role.value
        record.badge_number = req.badge_number
        record.latitude = req.latitude
        record.longitude = req.longitude
        record.on_duty = req.on_duty
        record.updated_at = datetime.now(tz=timezone.utc)
        db.commit()
        db.refresh(record)

        logger.info(
            f"Location updated for {record.role} {record.name} "
            f"({record.latitude:.4f}, {record.longitude:.4f})"
        )
        return _to_location(record)

    def list_on_duty(
        self, db: Session, role: Optional[ResponderRole] = None
    ) -> List[ResponderLocation]:
        q = db.query(ResponderLocationRecord).filter(
            ResponderLocationRecord.on_duty == True  # noqa: E712
        )
        if role is not None:
            q = q.filter(ResponderLocationRecord.role == role.value)
        return [_to_location(r) for r in q.all()]

    def list_in_corridor(
        self,
        db: Session,
        start: GeoLocation,
        end: GeoLocation,
        buffer_km: float,
    ) -> List[ResponderLocation]:
        """On-duty responders within `buffer_km` of the straight start → end segment."""
        return within_corridor(self.list_on_duty(db), start, end, buffer_km)


# Global singleton
responder_directory = ResponderDirectory()
