"""
Fastlane — Error Taxonomy

Typed failures raised by the alert store, the traffic-light registry
and their collaborators.
The HTTP layer maps them onto status codes in `fastlane.services.main`.
"""

from __future__ import annotations


class FastlaneError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500


class AlertValidationError(FastlaneError):
    """An alert is missing required fields; nothing was stored."""

    status_code = 400


class AlertNotFoundError(FastlaneError):
    """No alert with the given id exists (never created, deleted or expired)."""

    status_code = 404

    def __init__(self, alert_id: int | str) -> None:
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class AlertConflictError(FastlaneError):
    """A decision was submitted for an alert that already carries one."""

    status_code = 409

    def __init__(self, alert_id: int, existing: str | None) -> None:
        super().__init__(f"Alert {alert_id} already responded ({existing})")
        self.alert_id = alert_id
        self.existing = existing


class TransientIOError(FastlaneError):
    """A collaborator call (directions, push, polling) failed."""

    status_code = 502


class TrafficLightValidationError(FastlaneError):
    """A traffic-light write was rejected before touching the registry."""

    status_code = 400


class TrafficLightNotFoundError(FastlaneError):
    status_code = 404

    def __init__(self, light_id: int) -> None:
        super().__init__(f"Traffic light {light_id} not found")
        self.light_id = light_id
