"""
Fastlane — Matching & Deduplication Engine

For each ambulance GPS tick, decides which nearby responders get a new
alert. GPS ticks arrive every few seconds, so the engine throttles hard:

  1. Haversine distance to every on-duty responder; keep <= 2 km (inclusive)
  2. Responder already answered on this journey → never alert again
  3. Caps: <= 5 pending alerts per journey, <= 3 pending per responder
  4. Repeat cooldown: no new alert to a responder within 2 min of the last one
  5. Route context required (real start/end addresses, route coordinates)
  6. After an accept: 5 min global cooldown for the journey

All thresholds come from FastlaneSettings.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from fastlane.common.schemas import (
    Alert,
    AlertStatus,
    AmbulancePositionRequest,
    CreateAlertRequest,
    GeoLocation,
    ResponderLocation,
    TrafficStatus,
)
from fastlane.common.utils import haversine_distance_km, utc_now
from fastlane.config import get_settings
from fastlane.services.alert_store import UNKNOWN_ADDRESS, AlertStore, alert_store
from fastlane.services.responder_directory import ResponderDirectory, responder_directory
from fastlane.services.websocket_manager import ConnectionManager, ws_manager

logger = logging.getLogger(__name__)


# ── Journey state (ambulance-side cache) ──────────────────────────────────────

@dataclass
class SentAlert:
    responder_id: str
    created_at: datetime
    alert_id: Optional[int] = None
    status: AlertStatus = AlertStatus.PENDING
    traffic_status: Optional[TrafficStatus] = None

    @property
    def is_pending(self) -> bool:
        return self.status == AlertStatus.PENDING


@dataclass
class JourneyState:
    """What one ambulance has sent on its current journey and how it went."""

    driver_name: str
    start_address: Optional[str] = None
    end_address: Optional[str] = None
    sent_alerts: List[SentAlert] = field(default_factory=list)
    cooldown_until: Optional[datetime] = None
    accepted_alert_ids: Set[int] = field(default_factory=set)
    # serialises reconcile → plan → create → record_sent for one driver
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_sent(self, responder_id: str, created_at: datetime, alert_id: Optional[int] = None) -> SentAlert:
        sent = SentAlert(responder_id=responder_id, created_at=created_at, alert_id=alert_id)
        self.sent_alerts.append(sent)
        return sent

    def in_cooldown(self, now: datetime) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until

    def note_response(
        self,
        traffic_status: Optional[TrafficStatus],
        alert_id: Optional[int] = None,
        responder_id: Optional[str] = None,
    ) -> None:
        """Mark the matching sent alert(s) as answered."""
        for sent in self.sent_alerts:
            if (alert_id is not None and sent.alert_id == alert_id) or (
                alert_id is None and responder_id is not None and sent.responder_id == responder_id
            ):
                sent.status = AlertStatus.ACKNOWLEDGED
                sent.traffic_status = traffic_status

    def acknowledge_pending(self) -> int:
        """Retire every still-pending alert of this journey (route already cleared)."""
        count = 0
        for sent in self.sent_alerts:
            if sent.is_pending:
                sent.status = AlertStatus.ACKNOWLEDGED
                count += 1
        return count

    def forget_missing(self, present_ids: Set[int]) -> None:
        """Drop pending entries whose server-side alert expired or was purged."""
        self.sent_alerts = [
            s for s in self.sent_alerts
            if not (s.is_pending and s.alert_id is not None and s.alert_id not in present_ids)
        ]

    def is_same_route(self, start_address: Optional[str], end_address: Optional[str]) -> bool:
        return (self.start_address, self.end_address) == (start_address, end_address)

    def start_route(self, start_address: str, end_address: str, now: datetime) -> None:
        """Begin a new route; an accept cooldown still running carries over."""
        self.sent_alerts.clear()
        self.accepted_alert_ids.clear()
        if not self.in_cooldown(now):
            self.cooldown_until = None
        self.start_address = start_address
        self.end_address = end_address


@dataclass(frozen=True)
class NearbyResponder:
    responder: ResponderLocation
    distance_km: float

    @property
    def distance_m(self) -> float:
        return round(self.distance_km * 1000)


# ── Engine ────────────────────────────────────────────────────────────────────

class MatchingEngine:
    """Pure decision logic: which responders should receive a new alert now."""

    def __init__(
        self,
        radius_km: Optional[float] = None,
        max_pending_total: Optional[int] = None,
        max_pending_per_responder: Optional[int] = None,
        repeat_cooldown: Optional[timedelta] = None,
        accept_cooldown: Optional[timedelta] = None,
        alert_ttl: Optional[timedelta] = None,
    ) -> None:
        settings = get_settings()
        self.radius_km = radius_km if radius_km is not None else settings.proximity_radius_km
        self.max_pending_total = (
            max_pending_total if max_pending_total is not None else settings.max_pending_alerts_total
        )
        self.max_pending_per_responder = (
            max_pending_per_responder
            if max_pending_per_responder is not None
            else settings.max_pending_alerts_per_responder
        )
        self.repeat_cooldown = repeat_cooldown or timedelta(seconds=settings.repeat_alert_cooldown_s)
        self.accept_cooldown = accept_cooldown or timedelta(seconds=settings.accept_cooldown_s)
        self.alert_ttl = alert_ttl or timedelta(minutes=settings.alert_ttl_minutes)

    def nearby_responders(
        self, position: GeoLocation, responders: Iterable[ResponderLocation]
    ) -> List[NearbyResponder]:
        """Responders within the radius (boundary inclusive), nearest first."""
        nearby = []
        for responder in responders:
            distance = haversine_distance_km(
                position.latitude, position.longitude,
                responder.latitude, responder.longitude,
            )
            if distance <= self.radius_km:
                nearby.append(NearbyResponder(responder=responder, distance_km=distance))
        nearby.sort(key=lambda n: n.distance_km)
        return nearby

    @staticmethod
    def has_required_context(context: AmbulancePositionRequest) -> bool:
        def _real(address: Optional[str]) -> bool:
            return bool(address and address.strip() and address.strip().lower() != UNKNOWN_ADDRESS.lower())

        return (
            _real(context.start_address)
            and _real(context.end_address)
            and len(context.route_coordinates) > 0
        )

    def plan(
        self,
        journey: JourneyState,
        context: AmbulancePositionRequest,
        responders: Iterable[ResponderLocation],
        now: datetime,
    ) -> List[NearbyResponder]:
        """Apply steps 1–6 without side effects; return the responders to alert."""
        if journey.in_cooldown(now):
            logger.debug(f"{journey.driver_name}: accept cooldown until {journey.cooldown_until}")
            return []
        if not self.has_required_context(context):
            logger.debug(f"{journey.driver_name}: missing route context, no alerts")
            return []

        live = [s for s in journey.sent_alerts if now - s.created_at < self.alert_ttl]
        answered = {s.responder_id for s in journey.sent_alerts if not s.is_pending}
        pending_total = sum(1 for s in live if s.is_pending)

        targets: List[NearbyResponder] = []
        for candidate in self.nearby_responders(context.location, responders):
            if pending_total >= self.max_pending_total:
                logger.debug(f"{journey.driver_name}: pending cap {self.max_pending_total} reached")
                break

            rid = candidate.responder.id
            if rid in answered:
                continue

            pending_to_responder = [s for s in live if s.responder_id == rid and s.is_pending]
            if len(pending_to_responder) >= self.max_pending_per_responder:
                continue
            if pending_to_responder:
                latest = max(s.created_at for s in pending_to_responder)
                if now - latest < self.repeat_cooldown:
                    continue

            targets.append(candidate)
            pending_total += 1

        return targets

    def on_accepted(self, journey: JourneyState, accepted_at: datetime) -> None:
        """Start the journey-wide cooldown and retire the other pending alerts."""
        journey.cooldown_until = accepted_at + self.accept_cooldown
        retired = journey.acknowledge_pending()
        logger.info(
            f"{journey.driver_name}: route accepted, alerts paused until "
            f"{journey.cooldown_until.isoformat()} ({retired} pending retired)"
        )


# ── Dispatcher (engine + store + directory + push) ────────────────────────────

class AlertDispatcher:
    """
    Server-side rendition of the ambulance proximity check: keeps one
    JourneyState per driver, reconciles it with the store, plans and
    creates alerts, and fans them out. Failures degrade to "no alert sent".
    """

    def __init__(
        self,
        store: AlertStore = alert_store,
        engine: Optional[MatchingEngine] = None,
        directory: ResponderDirectory = responder_directory,
        notifier: ConnectionManager = ws_manager,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.engine = engine or MatchingEngine()
        self.directory = directory
        self.notifier = notifier
        self._clock = clock
        self._journeys: Dict[str, JourneyState] = {}
        self._lock = threading.Lock()

    def journey(self, driver_name: str) -> JourneyState:
        key = driver_name.strip().lower()
        with self._lock:
            if key not in self._journeys:
                self._journeys[key] = JourneyState(driver_name=driver_name.strip())
            return self._journeys[key]

    def end_journey(self, driver_name: str) -> bool:
        with self._lock:
            return self._journeys.pop(driver_name.strip().lower(), None) is not None

    def reconcile(self, journey: JourneyState) -> None:
        """Pull decisions for this driver's alerts out of the store."""
        current: Dict[int, Alert] = {a.id: a for a in self.store.list_active(driver_name=journey.driver_name)}
        for sent in list(journey.sent_alerts):
            alert = current.get(sent.alert_id) if sent.alert_id is not None else None
            if alert is None or alert.is_pending:
                continue
            journey.note_response(alert.traffic_status, alert_id=alert.id)
            if alert.traffic_status == TrafficStatus.ACCEPTED and alert.id not in journey.accepted_alert_ids:
                journey.accepted_alert_ids.add(alert.id)
                self.engine.on_accepted(journey, alert.responded_at or self._clock())
        # purged siblings of an accept were retired above and stay as answered
        journey.forget_missing(set(current))

    def process(
        self, db: Session, driver_name: str, context: AmbulancePositionRequest
    ) -> List[Alert]:
        try:
            return self._process(db, driver_name, context)
        except Exception:
            logger.exception(f"Matching failed for {driver_name}; no alert sent")
            return []

    def _process(
        self, db: Session, driver_name: str, context: AmbulancePositionRequest
    ) -> List[Alert]:
        journey = self.journey(driver_name)
        created: List[Alert] = []

        with journey.lock:
            now = self._clock()
            # a tick without route context never resets the journey
            if self.engine.has_required_context(context) and not journey.is_same_route(
                context.start_address, context.end_address
            ):
                if journey.sent_alerts:
                    logger.info(f"{driver_name}: route changed, starting a new journey")
                journey.start_route(context.start_address, context.end_address, now)

            self.reconcile(journey)

            responders = self.directory.list_on_duty(db)
            targets = self.engine.plan(journey, context, responders, now)

            for target in targets:
                alert = self.store.create(CreateAlertRequest(
                    driver_name=journey.driver_name,
                    police_id=target.responder.id,
                    police_name=target.responder.name,
                    area=context.area,
                    ambulance_role=context.ambulance_role,
                    route="Active Emergency Route",
                    distance_m=target.distance_m,
                    location=context.location,
                    route_coordinates=context.route_coordinates,
                    start_location=context.start_location,
                    end_location=context.end_location,
                    start_address=context.start_address,
                    end_address=context.end_address,
                    timestamp=now,
                ))
                journey.record_sent(target.responder.id, now, alert_id=alert.id)
                created.append(alert)
                logger.info(
                    f"Alert → {target.responder.name}: {journey.driver_name} at {target.distance_m:.0f}m",
                    extra={"context": {"alert_id": alert.id, "responder_id": target.responder.id}},
                )

        for alert in created:
            self.notifier.publish_alert_created(alert)
        return created


# Global singletons
matching_engine = MatchingEngine()
alert_dispatcher = AlertDispatcher(engine=matching_engine)
