"""
FastAPI routes: incident reports, threads and citizen conversations.

Provides endpoints to:
    POST   /api/v1/reports                        — submit a report
    GET    /api/v1/reports                        — list reports (filterable)
    GET    /api/v1/reports/attacks                — government manager view
    GET    /api/v1/threads/{id}                   — full thread
    DELETE /api/v1/threads/{id}                   — cascading delete
    POST   /api/v1/threads/{id}/responses         — government response
    POST   /api/v1/threads/{id}/replies           — citizen follow-up
    GET    /api/v1/threads/{id}/conversation      — ordered entries
    GET    /api/v1/conversations/{author_id}      — citizen's answered threads
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import GeoAlertService
from backend.app.alerts.models import ReportCategory
from backend.app.api.dependencies import get_alert_service
from backend.app.api.schemas import MessageCreate, ReportCreate

router = APIRouter(prefix="/api/v1", tags=["threads"])


@router.post(
    "/reports",
    status_code=201,
    summary="Submit an incident report",
    description=(
        "Attack reports need a GPS origin or a location label. Reports with "
        "an origin are broadcast to everyone within the alert radius."
    ),
)
async def submit_report(
    body: ReportCreate,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    report = await service.submit_report(
        body.author_id,
        body.text,
        body.category,
        origin=body.origin.to_coordinate() if body.origin else None,
        location_label=body.location_label,
        author_role=body.author_role,
    )
    return report.to_dict()


@router.get("/reports", summary="List reports, newest first")
async def list_reports(
    category: Optional[ReportCategory] = Query(None),
    author_id: Optional[str] = Query(None),
    service: GeoAlertService = Depends(get_alert_service),
) -> List[Dict[str, Any]]:
    if author_id:
        reports = await service.reports_by_author(author_id)
    else:
        reports = await service.store.list_reports()
    if category is not None:
        reports = [r for r in reports if r.category == category]
    return [r.to_dict() for r in reports]


@router.get(
    "/reports/attacks",
    summary="Attack reports with nearby counts",
    description="Each report carries how many other attack reports lie within the alert radius.",
)
async def list_attack_reports(
    service: GeoAlertService = Depends(get_alert_service),
) -> List[Dict[str, Any]]:
    return [
        {**report.to_dict(), "nearby_count": nearby}
        for report, nearby in await service.list_attack_reports()
    ]


@router.get("/threads/{thread_id}", summary="Get a thread")
async def get_thread(
    thread_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    thread = await service.get_thread(thread_id)
    return thread.to_dict()


@router.delete("/threads/{thread_id}", summary="Delete a thread and its messages")
async def delete_thread(
    thread_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    deleted = await service.delete_thread(thread_id)
    return {"thread_id": thread_id, "deleted": deleted}


@router.post("/threads/{thread_id}/responses", status_code=201, summary="Government response")
async def respond(
    thread_id: str,
    body: MessageCreate,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    response = await service.respond(thread_id, body.author_id, body.text)
    return response.to_dict()


@router.post("/threads/{thread_id}/replies", status_code=201, summary="Citizen follow-up")
async def reply(
    thread_id: str,
    body: MessageCreate,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    created = await service.reply(thread_id, body.author_id, body.text)
    return created.to_dict()


@router.get("/threads/{thread_id}/conversation", summary="Ordered conversation")
async def get_conversation(
    thread_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    entries = await service.conversation(thread_id)
    return {
        "thread_id": thread_id,
        "awaiting_response": len(entries) == 1,
        "entries": [e.to_dict() for e in entries],
    }


@router.get(
    "/conversations/{author_id}",
    summary="A citizen's answered threads",
    description="Only threads with at least one government response, most recent response first.",
)
async def list_conversations(
    author_id: str,
    service: GeoAlertService = Depends(get_alert_service),
) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in await service.conversations_for(author_id)]
