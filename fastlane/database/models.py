"""
Fastlane — SQLAlchemy ORM Models

The persistent registries: who is on duty and where they were last
seen, and the traffic signals along the city's roads. Uses create_all()
at startup, no migrations.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from fastlane.database.session import Base


# ── Responder Locations (police officers, toll operators) ─────────────────────

class ResponderLocationRecord(Base):
    __tablename__ = "responder_locations"

    responder_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="police", index=True)  # police | toll
    badge_number = Column(String, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    on_duty = Column(Boolean, default=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ── Traffic Lights ────────────────────────────────────────────────────────────

class TrafficLightRecord(Base):
    __tablename__ = "traffic_lights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    latitude = Column(Float, nullable=False, index=True)
    longitude = Column(Float, nullable=False, index=True)
    junction_type = Column(String, nullable=False, default="three-way")
    roads = Column(JSON, nullable=False, default=list)
    city = Column(String, nullable=True)

    # Signal runtime state
    status = Column(String, nullable=False, default="red")
    current_phase = Column(String, nullable=False, default="red")
    time_remaining = Column(Integer, nullable=False, default=30)
    is_emergency = Column(Boolean, default=False)

    # Phase durations (seconds)
    timing_red = Column(Integer, nullable=False, default=30)
    timing_yellow = Column(Integer, nullable=False, default=5)
    timing_green = Column(Integer, nullable=False, default=25)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
