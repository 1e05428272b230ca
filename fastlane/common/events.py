"""
Fastlane — Event Schemas

Pydantic models for the push channel (`alert:new`, `alert:responded`) and
for the driver-side response events produced by correlation.
These form the canonical contract between the server and its clients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import Field

from fastlane.common.schemas import Alert, ResponseOutcome, TrafficStatus, WireModel
from fastlane.common.utils import utc_now

ALERT_NEW = "alert:new"
ALERT_RESPONDED = "alert:responded"


class BaseEvent(WireModel):
    """Common envelope for all Fastlane events."""
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    source: str = "fastlane"


class AlertCreatedEvent(BaseEvent):
    type: str = ALERT_NEW
    alert: Alert

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertCreatedEvent":
        return cls(alert=alert)


class AlertRespondedEvent(BaseEvent):
    type: str = ALERT_RESPONDED
    alert: Alert
    driver_name: str
    alert_id: int
    traffic_status: Optional[TrafficStatus] = None
    message: Optional[str] = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertRespondedEvent":
        return cls(
            alert=alert,
            driver_name=alert.driver_name,
            alert_id=alert.id,
            traffic_status=alert.traffic_status,
            message=alert.police_response,
        )


class ResponseEvent(WireModel):
    """
    Emitted once per responded alert on the driver side after correlation.
    `inferred` is set when the outcome came from the free-text message.
    """
    response_id: str
    alert_id: Optional[str] = None
    outcome: ResponseOutcome
    inferred: bool = False
    message: Optional[str] = None
    police_officer: Optional[str] = None
    police_name: Optional[str] = None
    responded_at: Optional[str] = None
    reroute_suggested: bool = False

    def summary(self) -> Dict[str, Any]:
        return {"response_id": self.response_id, "outcome": self.outcome.value}
