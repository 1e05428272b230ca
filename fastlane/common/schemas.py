"""
Fastlane — Pydantic Domain Schemas

Strict type-safe data models for every data boundary (HTTP, store, events).
Field names are snake_case in Python and camelCase on the wire
(`driverName`, `trafficStatus`, ...), matching the mobile clients.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from fastlane.common.utils import ensure_utc


# ─── Enums ────────────────────────────────────────────────────────────────────

class AlertStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"

    @classmethod
    def normalize(cls, value: Any) -> "AlertStatus":
        """Map legacy `responded` / `cleared` onto ACKNOWLEDGED."""
        if isinstance(value, AlertStatus):
            return value
        raw = str(value).strip().lower()
        if raw in ("responded", "cleared"):
            return cls.ACKNOWLEDGED
        return cls(raw)


class TrafficStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @classmethod
    def normalize(cls, value: Any) -> "TrafficStatus":
        """Map legacy `clear` / `busy` onto ACCEPTED / REJECTED."""
        if isinstance(value, TrafficStatus):
            return value
        raw = str(value).strip().lower()
        if raw == "clear":
            return cls.ACCEPTED
        if raw == "busy":
            return cls.REJECTED
        return cls(raw)


class ResponseOutcome(str, Enum):
    """What the driver is told after correlation; RESPONDED means undetermined."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESPONDED = "responded"


class ResponderRole(str, Enum):
    POLICE = "police"
    TOLL = "toll"


class SignalPhase(str, Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class JunctionType(str, Enum):
    THREE_WAY = "three-way"
    FOUR_WAY = "four-way"
    ROUNDABOUT = "roundabout"


# ─── Base ─────────────────────────────────────────────────────────────────────

class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ─── Value Objects ────────────────────────────────────────────────────────────

class GeoLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# ─── Alert ────────────────────────────────────────────────────────────────────

class Alert(WireModel):
    """
    Closed, immutable alert record. The store replaces instances
    (copy-on-write) instead of mutating them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    driver_name: str
    police_id: Optional[str] = None
    police_name: Optional[str] = None
    area: Optional[str] = None
    ambulance_role: Optional[str] = None
    route: Optional[str] = None
    distance_m: Optional[float] = Field(default=None, alias="distance")
    location: GeoLocation
    route_coordinates: Optional[List[GeoLocation]] = None
    start_location: Optional[GeoLocation] = None
    end_location: Optional[GeoLocation] = None
    start_address: str = "Unknown"
    end_address: str = "Unknown"
    timestamp: Optional[datetime] = None
    created_at: datetime
    for_all_police: bool = True
    status: AlertStatus = AlertStatus.PENDING
    traffic_status: Optional[TrafficStatus] = None
    police_response: Optional[str] = None
    police_officer: Optional[str] = None
    responded_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None

    @property
    def effective_timestamp(self) -> datetime:
        return ensure_utc(self.timestamp or self.created_at)

    @property
    def is_pending(self) -> bool:
        return self.status == AlertStatus.PENDING

    def belongs_to(self, driver_name: str) -> bool:
        return self.driver_name.lower() == driver_name.strip().lower()


# ─── Requests ─────────────────────────────────────────────────────────────────

class CreateAlertRequest(WireModel):
    """
    Body of POST /alerts. `driver_name` and `location` are checked by the
    store so that missing values surface as a 400, not a schema error.
    """

    model_config = ConfigDict(extra="ignore")

    driver_name: Optional[str] = None
    police_id: Optional[str] = None
    police_name: Optional[str] = None
    area: Optional[str] = None
    ambulance_role: Optional[str] = None
    route: Optional[str] = None
    distance_m: Optional[float] = Field(default=None, alias="distance")
    location: Optional[GeoLocation] = None
    route_coordinates: Optional[List[GeoLocation]] = None
    start_location: Optional[GeoLocation] = None
    end_location: Optional[GeoLocation] = None
    start_address: Optional[str] = None
    end_address: Optional[str] = None
    timestamp: Optional[datetime] = None
    for_all_police: bool = True

    @field_validator("police_id", mode="before")
    @classmethod
    def _stringify_police_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class RespondRequest(WireModel):
    """Body of POST /alerts/respond. The id is parsed to int exactly once here."""

    model_config = ConfigDict(extra="ignore")

    alert_id: int
    traffic_status: TrafficStatus
    message: Optional[str] = None
    officer_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("officerName", "policeOfficer", "officer_name"),
    )

    @field_validator("traffic_status", mode="before")
    @classmethod
    def _normalize_traffic_status(cls, value: Any) -> TrafficStatus:
        return TrafficStatus.normalize(value)


class UpdateResponderLocationRequest(WireModel):
    name: str = "Police Officer"
    role: ResponderRole = ResponderRole.POLICE
    badge_number: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    on_duty: bool = True


class AmbulancePositionRequest(WireModel):
    """A GPS tick from an ambulance with the journey context it is driving."""

    model_config = ConfigDict(extra="ignore")

    location: GeoLocation
    ambulance_role: Optional[str] = "ambulance"
    area: Optional[str] = None
    route_coordinates: List[GeoLocation] = Field(default_factory=list)
    start_location: Optional[GeoLocation] = None
    end_location: Optional[GeoLocation] = None
    start_address: Optional[str] = None
    end_address: Optional[str] = None


# ─── Collaborator records ─────────────────────────────────────────────────────

class ResponderLocation(WireModel):
    id: str
    name: str
    role: ResponderRole = ResponderRole.POLICE
    latitude: float
    longitude: float
    updated_at: Optional[datetime] = None


class RouteSummary(WireModel):
    coordinates: List[GeoLocation]
    distance_km: float
    duration_min: float
    turn_instructions: List[str] = Field(default_factory=list)


class AlertStats(WireModel):
    total: int = 0
    pending: int = 0
    acknowledged: int = 0
    accepted: int = 0
    rejected: int = 0
    by_area: Dict[str, int] = Field(default_factory=dict)


# ─── Traffic lights ───────────────────────────────────────────────────────────

class SignalTiming(WireModel):
    """Phase durations in seconds."""

    red: int = Field(default=30, ge=0)
    yellow: int = Field(default=5, ge=0)
    green: int = Field(default=25, ge=0)


class CreateTrafficLightRequest(WireModel):
    name: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    junction_type: JunctionType = JunctionType.THREE_WAY
    roads: List[str] = Field(default_factory=list)
    city: Optional[str] = None
    status: SignalPhase = SignalPhase.RED
    current_phase: SignalPhase = SignalPhase.RED
    time_remaining: int = Field(default=30, ge=0)
    is_emergency: bool = False
    timing: SignalTiming = Field(default_factory=SignalTiming)


class SeedTrafficLightsRequest(WireModel):
    lights: List[CreateTrafficLightRequest] = Field(default_factory=list)


class UpdateTrafficLightRequest(WireModel):
    """Partial update (signal control). Only fields present in the body change."""

    name: Optional[str] = Field(default=None, min_length=1)
    junction_type: Optional[JunctionType] = None
    roads: Optional[List[str]] = None
    city: Optional[str] = None
    status: Optional[SignalPhase] = None
    current_phase: Optional[SignalPhase] = None
    time_remaining: Optional[int] = Field(default=None, ge=0)
    is_emergency: Optional[bool] = None
    timing: Optional[SignalTiming] = None


class TrafficLight(WireModel):
    id: int
    name: str
    latitude: float
    longitude: float
    junction_type: JunctionType = JunctionType.THREE_WAY
    roads: List[str] = Field(default_factory=list)
    city: Optional[str] = None
    status: SignalPhase = SignalPhase.RED
    current_phase: SignalPhase = SignalPhase.RED
    time_remaining: int = 30
    is_emergency: bool = False
    timing: SignalTiming = Field(default_factory=SignalTiming)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ─── Driver-side polling payload ──────────────────────────────────────────────

class PolledAlert(WireModel):
    """
    Lenient view of an alert as received by a polling driver. Every field
    is optional and status strings are kept raw so legacy values survive.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None
    driver_name: Optional[str] = None
    police_id: Optional[str] = None
    police_name: Optional[str] = None
    start_address: Optional[str] = None
    end_address: Optional[str] = None
    status: Optional[str] = None
    traffic_status: Optional[str] = None
    police_response: Optional[str] = None
    police_officer: Optional[str] = None
    responded_at: Optional[str] = None

    @field_validator("police_id", "responded_at", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return None if value is None else str(value)
