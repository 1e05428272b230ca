"""
Fastlane — Response Correlation

Driver-side reconciliation of polled alerts. The server already filters
by driver name; this layer decides which polled records are new,
actionable responses and guarantees each one is surfaced exactly once
no matter how often the same payload is polled.

Per alert, as seen by the driver:
  unknown → seen-pending → seen-responded (terminal, processed once)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from fastlane.common.events import ResponseEvent
from fastlane.common.schemas import Alert, PolledAlert, ResponseOutcome, TrafficStatus
from fastlane.common.utils import utc_now
from fastlane.services.matching_engine import JourneyState, MatchingEngine

logger = logging.getLogger(__name__)

RESPONDED_STATUSES = frozenset({"responded", "acknowledged", "cleared"})
DECIDED_TRAFFIC_STATUSES = frozenset({"accepted", "rejected", "clear", "busy"})

# Rejection is checked first: "rejected" contains "reject", never "accept".
_REJECT_PATTERN = re.compile(r"rejected|another way|reject", re.IGNORECASE)
_ACCEPT_PATTERN = re.compile(r"approved|proceed|accept", re.IGNORECASE)

PolledPayload = Union[PolledAlert, Alert, Mapping[str, Any]]


def infer_traffic_status(
    status: Optional[str],
    traffic_status: Optional[str],
    message: Optional[str],
) -> Tuple[ResponseOutcome, bool]:
    """
    Resolve the outcome of a responded alert. Returns (outcome, inferred).

    The explicit `trafficStatus` always wins. Only when it is missing do we
    fall back to keywords in the free-text message, and when that is
    inconclusive the outcome stays RESPONDED rather than guessing intent.
    """
    if traffic_status:
        try:
            return ResponseOutcome(TrafficStatus.normalize(traffic_status).value), False
        except ValueError:
            logger.warning(f"Unrecognised trafficStatus {traffic_status!r}; falling back to message")

    text = message or ""
    if _REJECT_PATTERN.search(text):
        outcome = ResponseOutcome.REJECTED
    elif _ACCEPT_PATTERN.search(text):
        outcome = ResponseOutcome.ACCEPTED
    else:
        outcome = ResponseOutcome.RESPONDED

    logger.info(
        f"trafficStatus inferred from message as {outcome.value}",
        extra={"context": {"status": status, "message": message}},
    )
    return outcome, True


def is_responded(alert: PolledAlert) -> bool:
    status = (alert.status or "").lower()
    traffic = (alert.traffic_status or "").lower()
    return status in RESPONDED_STATUSES or traffic in DECIDED_TRAFFIC_STATUSES


def response_id_for(alert: PolledAlert) -> str:
    """Stable dedup key: the alert id, else responder identity + response time."""
    if alert.id is not None and str(alert.id) != "":
        return str(alert.id)
    who = alert.police_id or alert.police_name or "unknown"
    return f"{who}:{alert.responded_at or ''}"


class ResponseCorrelator:
    """
    Turns batches of polled alerts into at most one ResponseEvent per
    response id. Optionally drives a JourneyState: an accept starts the
    journey cooldown and retires its pending alerts.
    """

    def __init__(
        self,
        driver_name: str,
        journey: Optional[JourneyState] = None,
        engine: Optional[MatchingEngine] = None,
        on_reroute: Optional[Callable[[ResponseEvent], None]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.driver_name = driver_name
        self.journey = journey
        self.engine = engine or MatchingEngine()
        self.on_reroute = on_reroute
        self._clock = clock
        self.processed: Set[str] = set()

    # ── Ownership ─────────────────────────────────────────────────────────────

    def is_ours(self, alert: PolledAlert) -> bool:
        """
        The server filtered by driver, so anything returned is ours. The
        extra checks cover id-less or foreign-looking records.
        """
        if alert.driver_name and alert.driver_name.lower() == self.driver_name.lower():
            return True
        if self.journey is None:
            return alert.driver_name is None
        for sent in self.journey.sent_alerts:
            if sent.alert_id is not None and str(sent.alert_id) == str(alert.id):
                return True
            if alert.police_id and sent.responder_id == alert.police_id:
                return True
        if alert.police_name and any(s.responder_id == alert.police_name for s in self.journey.sent_alerts):
            return True
        return (
            alert.start_address is not None
            and (alert.start_address, alert.end_address)
            == (self.journey.start_address, self.journey.end_address)
        )

    # ── Processing ────────────────────────────────────────────────────────────

    def process(self, payloads: Iterable[PolledPayload]) -> List[ResponseEvent]:
        events: List[ResponseEvent] = []
        for payload in payloads:
            try:
                alert = _as_polled(payload)
            except ValidationError as exc:
                logger.warning(f"Skipping malformed polled alert: {exc.error_count()} error(s)")
                continue
            except (TypeError, ValueError) as exc:
                logger.warning(f"Skipping unreadable polled alert: {exc}")
                continue

            if not (is_responded(alert) and self.is_ours(alert)):
                continue

            response_id = response_id_for(alert)
            if response_id in self.processed:
                continue
            self.processed.add(response_id)

            event = self._build_event(alert, response_id)
            self._apply(alert, event)
            events.append(event)
        return events

    def _build_event(self, alert: PolledAlert, response_id: str) -> ResponseEvent:
        outcome, inferred = infer_traffic_status(alert.status, alert.traffic_status, alert.police_response)
        return ResponseEvent(
            response_id=response_id,
            alert_id=None if alert.id is None else str(alert.id),
            outcome=outcome,
            inferred=inferred,
            message=alert.police_response,
            police_officer=alert.police_officer,
            police_name=alert.police_name,
            responded_at=alert.responded_at,
            reroute_suggested=outcome == ResponseOutcome.REJECTED,
        )

    def _apply(self, alert: PolledAlert, event: ResponseEvent) -> None:
        logger.info(f"New response for {self.driver_name}", extra={"context": event.summary()})

        if self.journey is not None and event.outcome != ResponseOutcome.RESPONDED:
            alert_id = _int_or_none(alert.id)
            self.journey.note_response(
                TrafficStatus(event.outcome.value),
                alert_id=alert_id,
                responder_id=alert.police_id if alert_id is None else None,
            )

        if event.outcome == ResponseOutcome.ACCEPTED and self.journey is not None:
            self.engine.on_accepted(self.journey, self._clock())
        elif event.outcome == ResponseOutcome.REJECTED and self.on_reroute is not None:
            try:
                self.on_reroute(event)
            except Exception:
                logger.exception(f"Re-route hook failed for response {event.response_id}")


def _as_polled(payload: PolledPayload) -> PolledAlert:
    if isinstance(payload, PolledAlert):
        return payload
    if isinstance(payload, Alert):
        return PolledAlert.model_validate(payload.to_wire())
    if not isinstance(payload, Mapping):
        raise TypeError(f"expected an alert object, got {type(payload).__name__}")
    return PolledAlert.model_validate(dict(payload))


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
