"""
FastAPI routes: stateless geo helpers for the map/UI layer.

    POST /api/v1/geo/distance   — haversine distance between two points
    POST /api/v1/geo/nearest    — closest candidate ("distance to zone")
    POST /api/v1/geo/nearby     — candidates within a radius (self excluded)
"""

from __future__ import annotations

from fastapi import APIRouter

from backend.app.api.schemas import (
    DistanceRequest,
    DistanceResponse,
    GeoPointOut,
    NearbyRequest,
    NearbyResponse,
    NearestRequest,
    NearestResponse,
)
from backend.app.spatial.geo_index import (
    GeoPoint,
    distance_km,
    format_distance,
    nearest,
    within_radius,
)

router = APIRouter(prefix="/api/v1/geo", tags=["geo"])


def _to_point(p: GeoPointOut) -> GeoPoint:
    return GeoPoint(id=p.id, latitude=p.lat, longitude=p.lon, kind=p.kind)


@router.post("/distance", response_model=DistanceResponse)
async def get_distance(body: DistanceRequest):
    km = distance_km(body.origin.to_coordinate(), body.destination.to_coordinate())
    return DistanceResponse(distance_km=round(km, 3), distance_display=format_distance(km))


@router.post("/nearest", response_model=NearestResponse)
async def get_nearest(body: NearestRequest):
    found = nearest(body.location.to_coordinate(), [_to_point(c) for c in body.candidates])
    if found is None:
        return NearestResponse(point=None, distance_km=None, distance_display=None)
    point, km = found
    return NearestResponse(
        point=GeoPointOut(**point.to_dict()),
        distance_km=round(km, 3),
        distance_display=format_distance(km),
    )


@router.post("/nearby", response_model=NearbyResponse)
async def get_nearby(body: NearbyRequest):
    matched = within_radius(
        body.location.to_coordinate(),
        [_to_point(c) for c in body.candidates],
        body.radius_km,
    )
    return NearbyResponse(
        radius_km=body.radius_km,
        count=len(matched),
        points=[GeoPointOut(**p.to_dict()) for p in matched],
    )
