"""
geo_index.py — Great-circle radius lookup for alert fan-out.

Provides:
    - Haversine distance between two (lat, lon) points
    - Inclusive point-in-radius check (recipient self-filtering)
    - "Nearby others" lookup over a candidate set (self excluded)
    - Nearest-candidate lookup for "distance to zone" displays
    - Bounding-box pre-filter for performance at scale

All distances are in **kilometers**. Coordinates are in **decimal degrees**.
Pure functions only; nothing here holds state between calls.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

with R = 6 371 km. The formula is symmetric in its arguments and yields
exactly 0 for identical points.

Neighbour semantics
===================
``within_radius`` answers "which OTHER reports are near this one", so a
candidate at distance 0 (the point itself, or a duplicate submission from
the same spot) is excluded. ``is_inside_radius`` answers "is this recipient
inside the alert circle", where distance 0 is obviously inside.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.app.core.errors import InvalidCoordinate, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0

# Slack added to the bounding box so float rounding never rejects a
# candidate that sits exactly on the circle.
_BBOX_PAD_DEG = 1e-9


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A validated geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        try:
            lat = float(self.latitude)
            lon = float(self.longitude)
        except (TypeError, ValueError):
            raise InvalidCoordinate(
                self.latitude, self.longitude, "Coordinates must be numeric",
            ) from None
        if not (-90.0 <= lat <= 90.0):
            raise InvalidCoordinate(
                lat, lon, f"Latitude must be in [-90, 90], got {lat}",
            )
        if not (-180.0 <= lon <= 180.0):
            raise InvalidCoordinate(
                lat, lon, f"Longitude must be in [-180, 180], got {lon}",
            )
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Coordinate":
        return cls(data.get("latitude"), data.get("longitude"))


@dataclass(frozen=True)
class GeoPoint:
    """
    An identified point — lookup candidate and map read-shape.

    Coordinates are NOT validated on construction: a candidate set built
    from stored records may contain a corrupt entry, and that entry alone
    must be dropped from a lookup rather than failing the whole query.
    """
    id: str
    latitude: float
    longitude: float
    kind: Optional[str] = None

    @property
    def coordinate(self) -> Coordinate:
        """Validated coordinate; raises InvalidCoordinate."""
        return Coordinate(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lat": self.latitude,
            "lon": self.longitude,
            "kind": self.kind,
        }


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance_km(a: Coordinate, b: Coordinate) -> float:
    """
    Great-circle distance between two points.

    Examples
    --------
    >>> round(distance_km(Coordinate(34.08, 74.80), Coordinate(34.081, 74.801)), 3)
    0.144
    >>> distance_km(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = b.lat_rad - a.lat_rad
    d_lon = b.lon_rad - a.lon_rad

    h = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(a.lat_rad)
        * math.cos(b.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_KM * c


# ---------------------------------------------------------------------------
# Bounding-box pre-filter
# ---------------------------------------------------------------------------

def _bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    (min_lat, max_lat, min_lon, max_lon) enclosing the circle.

    The longitude half-width uses asin(sin(δ) / cos(φ)), the true extent of
    a spherical cap, rather than the δ / cos(φ) approximation which is
    slightly too narrow near the east/west edges.
    """
    angular = radius_km / EARTH_RADIUS_KM

    delta_lat = math.degrees(angular) + _BBOX_PAD_DEG
    min_lat = center.latitude - delta_lat
    max_lat = center.latitude + delta_lat

    cos_lat = math.cos(center.lat_rad)
    ratio = math.sin(angular) / cos_lat if cos_lat > 1e-12 else 2.0
    if ratio >= 1.0 or min_lat <= -90.0 or max_lat >= 90.0:
        # Circle wraps a pole or spans the whole longitude range
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0

    delta_lon = math.degrees(math.asin(ratio)) + _BBOX_PAD_DEG
    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        # Antimeridian crossing: fall back to no longitude rejection
        return min_lat, max_lat, -180.0, 180.0

    return min_lat, max_lat, min_lon, max_lon


def _inside_bbox(
    point: Coordinate,
    min_lat: float, max_lat: float,
    min_lon: float, max_lon: float,
) -> bool:
    return (min_lat <= point.latitude <= max_lat
            and min_lon <= point.longitude <= max_lon)


def _check_radius(radius_km: float) -> None:
    if not radius_km > 0:
        raise ValidationError(
            f"Radius must be positive, got {radius_km}", field="radius_km",
        )


# ---------------------------------------------------------------------------
# Radius lookups
# ---------------------------------------------------------------------------

def is_inside_radius(
    center: Coordinate,
    point: Coordinate,
    radius_km: float,
) -> Tuple[bool, float]:
    """
    Inclusive circle membership, returning the distance as well.

    >>> is_inside_radius(Coordinate(34.08, 74.80), Coordinate(34.08, 74.80), 10.0)
    (True, 0.0)
    """
    _check_radius(radius_km)
    dist = distance_km(center, point)
    return dist <= radius_km, dist


def within_radius(
    center: Coordinate,
    candidates: Iterable[GeoPoint],
    radius_km: float,
) -> List[GeoPoint]:
    """
    All candidates with 0 < distance ≤ radius_km, in input order.

    Candidates whose coordinates are invalid are skipped and logged; an
    invalid ``center`` is the caller's error and raises.
    """
    _check_radius(radius_km)
    bbox = _bounding_box(center, radius_km)

    matched: List[GeoPoint] = []
    skipped = 0
    for candidate in candidates:
        try:
            coord = candidate.coordinate
        except InvalidCoordinate:
            skipped += 1
            continue

        if not _inside_bbox(coord, *bbox):
            continue

        dist = distance_km(center, coord)
        if 0.0 < dist <= radius_km:
            matched.append(candidate)

    if skipped:
        logger.warning(
            "Radius lookup skipped %d candidate(s) with invalid coordinates",
            skipped,
        )
    return matched


def nearby_count(
    center: Coordinate,
    candidates: Iterable[GeoPoint],
    radius_km: float,
) -> int:
    """Number of OTHER points within the radius (distance > 0)."""
    return len(within_radius(center, candidates, radius_km))


def nearest(
    center: Coordinate,
    candidates: Iterable[GeoPoint],
) -> Optional[Tuple[GeoPoint, float]]:
    """Closest valid candidate and its distance, or None if there is none."""
    best: Optional[Tuple[GeoPoint, float]] = None
    for candidate in candidates:
        try:
            dist = distance_km(center, candidate.coordinate)
        except InvalidCoordinate:
            continue
        if best is None or dist < best[1]:
            best = (candidate, dist)
    return best


# ---------------------------------------------------------------------------
# Utility: Human-readable distance
# ---------------------------------------------------------------------------

def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.73 km'
    """
    if km < 1.0:
        return f"{int(km * 1000)} m"
    return f"{km:.2f} km"
