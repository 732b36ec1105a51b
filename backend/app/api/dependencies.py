"""
Shared FastAPI dependencies.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Query, Request

from backend.app.alerts.alert_service import GeoAlertService
from backend.app.core.errors import GeoAlertError, ValidationError
from backend.app.spatial.geo_index import Coordinate


def get_alert_service(request: Request) -> GeoAlertService:
    """The service built by the application lifespan."""
    service = getattr(request.app.state, "alert_service", None)
    if service is None:
        raise GeoAlertError(
            "Alert service is not running",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
        )
    return service


def optional_location(
    lat: Optional[float] = Query(None, description="Recipient latitude"),
    lon: Optional[float] = Query(None, description="Recipient longitude"),
) -> Optional[Coordinate]:
    """Recipient position from ?lat=&lon=; both or neither."""
    if lat is None and lon is None:
        return None
    if lat is None or lon is None:
        raise ValidationError("Provide both 'lat' and 'lon', or neither", field="lat")
    return Coordinate(lat, lon)
