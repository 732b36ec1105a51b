"""
FastAPI routes: notifications, read state and map markers.

Provides endpoints to:
    GET    /api/v1/notifications                      — visible to a recipient
    GET    /api/v1/notifications/unread-count         — badge count
    GET    /api/v1/notifications/map-points           — geo notifications as markers
    POST   /api/v1/notifications                      — direct government notice
    POST   /api/v1/notifications/read-all             — mark everything visible read
    DELETE /api/v1/notifications/read-state/{rid}     — reset a recipient's read set
    GET    /api/v1/notifications/{id}                 — single notification
    POST   /api/v1/notifications/{id}/read            — mark one read
    POST   /api/v1/notifications/{id}/dismiss         — mark read + delete for all
    DELETE /api/v1/notifications/{id}                 — acknowledge (delete for all)

Recipient location is passed as ``?lat=&lon=``; without it every geo
notification counts as visible.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import GeoAlertService
from backend.app.api.dependencies import get_alert_service, optional_location
from backend.app.api.schemas import DirectNotificationCreate, GeoPointOut, RecipientInput
from backend.app.spatial.geo_index import Coordinate

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", summary="Notifications visible to a recipient, newest first")
async def list_notifications(
    recipient_id: str = Query(..., min_length=1),
    location: Optional[Coordinate] = Depends(optional_location),
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    visible = await service.notifications_for(recipient_id, location)
    read = await service.read_state.read_ids(recipient_id)
    return {
        "recipient_id": recipient_id,
        "unread_count": sum(1 for n in visible if n.id not in read),
        "notifications": [{**n.to_dict(), "read": n.id in read} for n in visible],
    }


@router.get("/unread-count", summary="Unread badge count")
async def unread_count(
    recipient_id: str = Query(..., min_length=1),
    location: Optional[Coordinate] = Depends(optional_location),
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    count = await service.unread_count(recipient_id, location)
    return {"recipient_id": recipient_id, "unread_count": count}


@router.get("/map-points", response_model=List[GeoPointOut], summary="Map markers")
async def map_points(
    service: GeoAlertService = Depends(get_alert_service),
) -> List[Dict[str, Any]]:
    return [p.to_dict() for p in await service.map_points()]


@router.post("", status_code=201, summary="Send a direct notice")
async def notify_user(
    body: DirectNotificationCreate,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    notification = await service.notify_user(
        body.recipient_id, body.title, body.message, body.kind,
    )
    return notification.to_dict()


@router.post("/read-all", summary="Mark all visible notifications read")
async def mark_all_read(
    body: RecipientInput,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    location = body.location.to_coordinate() if body.location else None
    marked = await service.mark_all_read(body.recipient_id, location)
    return {"recipient_id": body.recipient_id, "marked": marked}


@router.delete("/read-state/{recipient_id}", summary="Forget what a recipient has read")
async def clear_read_state(
    recipient_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    await service.clear_read_state(recipient_id)
    return {"recipient_id": recipient_id, "cleared": True}


@router.get("/{notification_id}", summary="Get one notification")
async def get_notification(
    notification_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    notification = await service.dispatcher.get_notification(notification_id)
    return notification.to_dict()


@router.post("/{notification_id}/read", summary="Mark one notification read")
async def mark_read(
    notification_id: str,
    body: RecipientInput,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    newly = await service.mark_read(body.recipient_id, notification_id)
    return {
        "notification_id": notification_id,
        "recipient_id": body.recipient_id,
        "newly_read": newly,
    }


@router.post(
    "/{notification_id}/dismiss",
    summary="Dismiss (mark read and delete for everyone)",
)
async def dismiss(
    notification_id: str,
    body: RecipientInput,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    await service.dismiss(body.recipient_id, notification_id)
    return {"notification_id": notification_id, "dismissed": True}


@router.delete("/{notification_id}", summary="Acknowledge (delete for everyone)")
async def acknowledge(
    notification_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    await service.dispatcher.acknowledge(notification_id)
    return {"notification_id": notification_id, "deleted": True}
