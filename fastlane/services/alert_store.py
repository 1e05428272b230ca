"""
Fastlane — Alert Store

Authoritative in-memory registry of ambulance → responder alerts.

State is volatile (lost on restart). Every public method holds
one re-entrant lock for its whole read-modify-write, so list-with-sweep
and respond-with-purge never interleave with a concurrent create.
Alerts are frozen models; updates swap in a copy under the lock.

Lifecycle:
  create → pending
  respond → acknowledged (+ purge of the driver's other pending alerts on accept)
  expiry (15 min, swept lazily on read) | delete | clear_all → gone
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fastlane.common.errors import (
    AlertConflictError,
    AlertNotFoundError,
    AlertValidationError,
)
from fastlane.common.schemas import (
    Alert,
    AlertStats,
    AlertStatus,
    CreateAlertRequest,
    TrafficStatus,
)
from fastlane.common.utils import utc_now
from fastlane.config import get_settings

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "Unknown"

DEFAULT_RESPONSE_MESSAGES: Dict[TrafficStatus, str] = {
    TrafficStatus.ACCEPTED: "Route approved. You can proceed.",
    TrafficStatus.REJECTED: "Route rejected. Please take another way.",
}


class AlertStore:
    """Process-wide alert registry keyed by integer id, insertion ordered."""

    def __init__(
        self,
        ttl: Optional[timedelta] = None,
        reject_duplicate_responses: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings = get_settings()
        self._ttl = ttl or timedelta(minutes=settings.alert_ttl_minutes)
        self._reject_duplicates = (
            settings.reject_duplicate_responses
            if reject_duplicate_responses is None
            else reject_duplicate_responses
        )
        self._clock = clock
        self._alerts: Dict[int, Alert] = {}
        self._order: List[int] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ── Create ────────────────────────────────────────────────────────────────

    def create(self, request: CreateAlertRequest) -> Alert:
        """Validate, assign the next id and store. Nothing is stored on failure."""
        driver_name = (request.driver_name or "").strip()
        if not driver_name:
            raise AlertValidationError("driverName is required")
        if request.location is None:
            raise AlertValidationError("location (ambulance current position) is required")

        with self._lock:
            alert = Alert(
                id=next(self._ids),
                driver_name=driver_name,
                police_id=request.police_id,
                police_name=request.police_name,
                area=request.area,
                ambulance_role=request.ambulance_role,
                route=request.route,
                distance_m=request.distance_m,
                location=request.location,
                route_coordinates=request.route_coordinates or None,
                start_location=request.start_location,
                end_location=request.end_location,
                start_address=_address_or_unknown(request.start_address),
                end_address=_address_or_unknown(request.end_address),
                timestamp=request.timestamp,
                created_at=self._clock(),
                for_all_police=True,
            )
            self._alerts[alert.id] = alert
            self._order.append(alert.id)

        logger.info(
            f"Alert #{alert.id} created for driver {alert.driver_name}",
            extra={"context": {
                "alert_id": alert.id,
                "police_id": alert.police_id,
                "route_points": len(alert.route_coordinates or []),
            }},
        )
        return alert

    # ── Read ──────────────────────────────────────────────────────────────────

    def get(self, alert_id: int) -> Alert:
        with self._lock:
            self._sweep_expired_locked()
            alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def list_active(
        self,
        driver_name: Optional[str] = None,
        pending_only: bool = False,
    ) -> List[Alert]:
        """
        Sweep expired alerts, then filter by driver (case-insensitive) or
        to pending only, newest first by effective timestamp.
        """
        with self._lock:
            self._sweep_expired_locked()
            alerts = [self._alerts[i] for i in self._order]

        if driver_name:
            alerts = [a for a in alerts if a.belongs_to(driver_name)]
        if pending_only:
            alerts = [a for a in alerts if a.is_pending]

        alerts.sort(key=lambda a: (a.effective_timestamp, a.id), reverse=True)
        return alerts

    def stats(self) -> AlertStats:
        with self._lock:
            self._sweep_expired_locked()
            alerts = [self._alerts[i] for i in self._order]

        by_area = Counter(a.area or "Unknown" for a in alerts)
        return AlertStats(
            total=len(alerts),
            pending=sum(1 for a in alerts if a.status == AlertStatus.PENDING),
            acknowledged=sum(1 for a in alerts if a.status == AlertStatus.ACKNOWLEDGED),
            accepted=sum(1 for a in alerts if a.traffic_status == TrafficStatus.ACCEPTED),
            rejected=sum(1 for a in alerts if a.traffic_status == TrafficStatus.REJECTED),
            by_area=dict(by_area),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    # ── Respond ───────────────────────────────────────────────────────────────

    def respond(
        self,
        alert_id: int,
        traffic_status: TrafficStatus | str,
        message: Optional[str] = None,
        officer_name: Optional[str] = None,
    ) -> Alert:
        """
        Record a responder decision. On ACCEPTED the driver's other pending
        alerts are purged within the same locked step.
        """
        decision = TrafficStatus.normalize(traffic_status)

        with self._lock:
            self._sweep_expired_locked()
            current = self._alerts.get(alert_id)
            if current is None:
                raise AlertNotFoundError(alert_id)

            if current.traffic_status is not None:
                if self._reject_duplicates:
                    raise AlertConflictError(alert_id, current.traffic_status.value)
                logger.warning(
                    f"Alert #{alert_id} re-responded: "
                    f"{current.traffic_status.value} → {decision.value} (last write wins)",
                    extra={"context": {"alert_id": alert_id}},
                )

            now = self._clock()
            updated = current.model_copy(update={
                "status": AlertStatus.ACKNOWLEDGED,
                "traffic_status": decision,
                "police_response": message or DEFAULT_RESPONSE_MESSAGES[decision],
                "police_officer": officer_name,
                "responded_at": now,
                "acknowledged_at": now,
            })
            self._alerts[alert_id] = updated

            purged: List[Alert] = []
            if decision == TrafficStatus.ACCEPTED:
                purged = self._purge_accepted_duplicates_locked(updated)

        logger.info(
            f"Alert #{alert_id} {decision.value} by {officer_name or 'unknown officer'}",
            extra={"context": {
                "alert_id": alert_id,
                "driver_name": updated.driver_name,
                "purged": [a.id for a in purged],
            }},
        )
        return updated

    def purge_accepted_duplicates(self, accepted_alert: Alert) -> List[Alert]:
        """Remove the other pending alerts of the accepted alert's driver."""
        with self._lock:
            return self._purge_accepted_duplicates_locked(accepted_alert)

    # ── Delete ────────────────────────────────────────────────────────────────

    def delete(self, alert_id: int) -> Alert:
        with self._lock:
            self._sweep_expired_locked()
            alert = self._alerts.pop(alert_id, None)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            self._order.remove(alert_id)
        logger.info(f"Alert #{alert_id} deleted")
        return alert

    def clear_all(self) -> int:
        """Drop every alert. Ids keep counting up; they are never reused."""
        with self._lock:
            count = len(self._alerts)
            self._alerts.clear()
            self._order.clear()
        logger.info(f"Cleared {count} alerts")
        return count

    # ── Internals (caller holds self._lock) ───────────────────────────────────

    def _sweep_expired_locked(self) -> None:
        cutoff = self._clock() - self._ttl
        expired = [i for i in self._order if self._alerts[i].effective_timestamp <= cutoff]
        if not expired:
            return
        for alert_id in expired:
            del self._alerts[alert_id]
        expired_ids = set(expired)
        self._order = [i for i in self._order if i not in expired_ids]
        logger.debug(f"Swept {len(expired)} expired alerts: {expired}")

    def _purge_accepted_duplicates_locked(self, accepted: Alert) -> List[Alert]:
        doomed = [
            self._alerts[i]
            for i in self._order
            if i != accepted.id
            and self._alerts[i].is_pending
            and self._alerts[i].belongs_to(accepted.driver_name)
        ]
        if not doomed:
            return []
        doomed_ids = {a.id for a in doomed}
        for alert_id in doomed_ids:
            del self._alerts[alert_id]
        self._order = [i for i in self._order if i not in doomed_ids]
        logger.info(
            f"Purged {len(doomed)} duplicate pending alert(s) for {accepted.driver_name} "
            f"after #{accepted.id} was accepted",
        )
        return doomed


def _address_or_unknown(address: Optional[str]) -> str:
    if address is None or not address.strip():
        return UNKNOWN_ADDRESS
    return address.strip()


# Global singleton
alert_store = AlertStore()
