"""
Fastlane — Shared Utilities

Pure, stateless helper functions used across multiple services:
great-circle distance, route-corridor filtering and UTC time helpers.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable, Protocol, TypeVar

EARTH_RADIUS_KM = 6371.0
METERS_PER_DEGREE = 111_000.0  # local equirectangular scale


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


P = TypeVar("P", bound=HasCoordinates)


def _check_finite(*values: float) -> None:
    for value in values:
        if value is None or math.isnan(value) or math.isinf(value):
            raise ValueError(f"Invalid coordinate: {value!r}")


def haversine_distance_km(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """
    Calculate the great-circle distance in **kilometers** between two
    GPS coordinates using the Haversine formula (R = 6371 km).

    Raises ValueError on NaN / infinite input.
    """
    _check_finite(lat1, lon1, lat2, lon2)
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_distance_m(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Same as `haversine_distance_km`, in meters."""
    return haversine_distance_km(lat1, lon1, lat2, lon2) * 1000.0


def point_to_segment_distance_m(
    point: HasCoordinates, start: HasCoordinates, end: HasCoordinates
) -> float:
    """
    Distance in meters from `point` to the chord `start` → `end`.

    Projects onto a local equirectangular plane (longitude scaled by the
    cosine of the segment's mean latitude) and clamps the projection
    parameter to [0, 1]. Good enough at city scale; not valid near the
    poles or for very long segments.
    """
    _check_finite(
        point.latitude, point.longitude,
        start.latitude, start.longitude,
        end.latitude, end.longitude,
    )
    mid_lat = (start.latitude + end.latitude) / 2
    lat_scale = METERS_PER_DEGREE
    lng_scale = METERS_PER_DEGREE * math.cos(math.radians(mid_lat))

    ax = (end.longitude - start.longitude) * lng_scale
    ay = (end.latitude - start.latitude) * lat_scale
    px = (point.longitude - start.longitude) * lng_scale
    py = (point.latitude - start.latitude) * lat_scale

    seg_len2 = ax * ax + ay * ay
    if seg_len2 == 0:
        return math.hypot(px, py)

    t = max(0.0, min(1.0, (px * ax + py * ay) / seg_len2))
    return math.hypot(px - t * ax, py - t * ay)


def bounding_box(
    start: HasCoordinates, end: HasCoordinates, buffer_km: float
) -> tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lng, max_lng) around a segment plus buffer."""
    mid_lat = (start.latitude + end.latitude) / 2
    deg_lat = buffer_km / (METERS_PER_DEGREE / 1000)
    deg_lng = buffer_km / ((METERS_PER_DEGREE / 1000) * math.cos(math.radians(mid_lat)))
    return (
        min(start.latitude, end.latitude) - deg_lat,
        max(start.latitude, end.latitude) + deg_lat,
        min(start.longitude, end.longitude) - deg_lng,
        max(start.longitude, end.longitude) + deg_lng,
    )


def within_corridor(
    points: Iterable[P],
    start: HasCoordinates,
    end: HasCoordinates,
    buffer_km: float,
) -> list[P]:
    """
    Keep the points lying within `buffer_km` of the straight route segment.
    A bounding-box pre-filter runs before the projected distance check.
    """
    min_lat, max_lat, min_lng, max_lng = bounding_box(start, end, buffer_km)
    max_distance_m = buffer_km * 1000
    return [
        p
        for p in points
        if min_lat <= p.latitude <= max_lat
        and min_lng <= p.longitude <= max_lng
        and point_to_segment_distance_m(p, start, end) <= max_distance_m
    ]


def utc_now() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
