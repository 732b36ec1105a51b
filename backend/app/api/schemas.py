"""
Pydantic schemas for the geo-alert API.

Separated from the route handlers so they are reusable across
the codebase (routers, background pollers, tests).
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from backend.app.alerts.models import (
    AuthorRole,
    NotificationKind,
    ReportCategory,
)
from backend.app.spatial.geo_index import Coordinate


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """
    Accepts location from either browser geolocation or manual entry.
    Range checks happen in Coordinate so every entry point rejects the
    same values with the same error.
    """
    latitude: float = Field(
        ...,
        description="Latitude in decimal degrees",
        examples=[34.08],
    )
    longitude: float = Field(
        ...,
        description="Longitude in decimal degrees",
        examples=[74.80],
    )

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class GeoPointOut(BaseModel):
    """Map read-shape."""
    id: str
    lat: float
    lon: float
    kind: Optional[str] = None


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------

class ReportCreate(BaseModel):
    """Request body for POST /api/v1/reports."""
    author_id: str = Field(..., min_length=1, examples=["citizen-7"])
    text: str = Field(..., min_length=1, examples=["Gunfire heard near the bridge"])
    category: ReportCategory = Field(
        default=ReportCategory.GENERAL,
        description="attack | general | instruction",
    )
    author_role: AuthorRole = Field(default=AuthorRole.CIVILIAN)
    origin: Optional[LocationInput] = Field(
        default=None,
        description="GPS position; attack reports only",
    )
    location_label: Optional[str] = Field(
        default=None,
        description="Reverse-geocoded or manually chosen place, e.g. 'Srinagar, Jammu and Kashmir'",
        examples=["Srinagar"],
    )


class MessageCreate(BaseModel):
    """Body for a government response or a citizen reply."""
    author_id: str = Field(..., min_length=1, examples=["gov-desk-1"])
    text: str = Field(..., min_length=1, examples=["Units dispatched, stay indoors."])


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class DirectNotificationCreate(BaseModel):
    """Government notice to one user, or to a ``geo:<lat>,<lon>,<km>`` scope."""
    recipient_id: str = Field(..., min_length=1, examples=["citizen-7"])
    title: str = Field(..., min_length=1, examples=["Evacuation order"])
    message: str = Field("", examples=["Move to the community hall by 18:00."])
    kind: NotificationKind = Field(default=NotificationKind.GENERAL)


class RecipientInput(BaseModel):
    recipient_id: str = Field(..., min_length=1, examples=["citizen-7"])
    location: Optional[LocationInput] = None


# ---------------------------------------------------------------------------
# Geo
# ---------------------------------------------------------------------------

class DistanceRequest(BaseModel):
    origin: LocationInput
    destination: LocationInput


class DistanceResponse(BaseModel):
    distance_km: float
    distance_display: str


class NearestRequest(BaseModel):
    location: LocationInput
    candidates: List[GeoPointOut] = Field(..., min_length=1)


class NearestResponse(BaseModel):
    point: Optional[GeoPointOut]
    distance_km: Optional[float]
    distance_display: Optional[str]


class NearbyRequest(BaseModel):
    location: LocationInput
    radius_km: float = Field(10.0, gt=0, examples=[10.0])
    candidates: List[GeoPointOut] = Field(default_factory=list)


class NearbyResponse(BaseModel):
    radius_km: float
    count: int
    points: List[GeoPointOut]
