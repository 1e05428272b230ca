"""
Fastlane Configuration — Single Source of Truth (SSoT)

All application-wide settings, alerting policy constants and
environment-specific values are centralized here using pydantic-settings.
Every value can be overridden with a `FASTLANE_`-prefixed environment
variable or a `.env` file.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─── Enums ────────────────────────────────────────────────────────────────────

class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ─── Core Application Settings ───────────────────────────────────────────────

class FastlaneSettings(BaseSettings):
    """Global configuration loaded from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FASTLANE_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────────────
    environment: Environment = Field(default=Environment.DEV)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    debug: bool = Field(default=True)

    # ── API Server ───────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=5000)

    # ── Responder directory (any SQLAlchemy URL) ─────────────────────────────
    database_url: str = Field(default="sqlite:///./fastlane.db")

    # ── Alert lifecycle ──────────────────────────────────────────────────────
    alert_ttl_minutes: float = Field(default=15.0, gt=0)
    reject_duplicate_responses: bool = Field(default=False)

    # ── Matching engine ──────────────────────────────────────────────────────
    proximity_radius_km: float = Field(default=2.0, gt=0)
    max_pending_alerts_total: int = Field(default=5, ge=0)
    max_pending_alerts_per_responder: int = Field(default=3, ge=0)
    repeat_alert_cooldown_s: int = Field(default=120, ge=0)
    accept_cooldown_s: int = Field(default=300, ge=0)

    # ── Driver polling ───────────────────────────────────────────────────────
    driver_poll_interval_s: float = Field(default=2.0, gt=0)

    # ── Corridor filtering ───────────────────────────────────────────────────
    corridor_buffer_km: float = Field(default=1.0, gt=0)

    # ── Directions provider (OSRM) ───────────────────────────────────────────
    directions_base_url: str = Field(default="https://router.project-osrm.org/route/v1/driving")
    directions_timeout_s: float = Field(default=5.0)

    # ── Driver client ────────────────────────────────────────────────────────
    api_base_url: str = Field(default="http://localhost:5000")


# ─── Singleton accessor ──────────────────────────────────────────────────────

_settings: Optional[FastlaneSettings] = None


def get_settings() -> FastlaneSettings:
    """Return the cached global settings instance (lazy-loaded)."""
    global _settings
    if _settings is None:
        _settings = FastlaneSettings()
    return _settings
