from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modsentry.apps.api.deps import Principal, get_db, get_services, require_role
from modsentry.domain.events import AUDIT_CATEGORIES, SEVERITY_ORDER
from modsentry.domain.models import AuditEvent
from modsentry.persistence.repos import audit as audit_repo
from modsentry.services.audit import AuditQuery
from modsentry.services.registry import ServiceRegistry


router = APIRouter(prefix="/audit", tags=["audit"])


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    severity: str
    category: str
    actor_ref: str | None
    message: str
    resource_type: str | None
    resource_id: str | None
    metadata_json: dict[str, Any] | None
    created_at: str


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _to_response(event: AuditEvent) -> AuditEventResponse:
    # Serialize audit event datetimes to ISO 8601 for API clients.
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at.isoformat(),
        severity=event.severity,
        category=event.category,
        actor_ref=event.actor_ref,
        message=event.message,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        metadata_json=event.metadata_json,
        created_at=event.created_at.isoformat(),
    )


@router.get("/events")
async def list_audit_events(
    category: str | None = None,
    actor_ref: str | None = None,
    severity: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    q: str | None = Query(default=None, max_length=200),
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> AuditEventsPage:
    if category is not None and category not in AUDIT_CATEGORIES:
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": f"Unknown category: {category}"})
    if severity is not None and severity not in SEVERITY_ORDER:
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": f"Unknown severity: {severity}"})

    try:
        events = await services.audit_log.query(
            AuditQuery(
                occurred_from=occurred_from,
                occurred_to=occurred_to,
                category=category,
                actor_ref=actor_ref,
                severity=severity,
                resource_type=resource_type,
                resource_id=resource_id,
                text=q,
                offset=offset,
                limit=limit + 1,
            )
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit events") from exc

    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit

    return AuditEventsPage(items=[_to_response(event) for event in events], next_offset=next_offset)


@router.get("/events/{event_id}")
async def get_audit_event(
    event_id: int,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> AuditEventResponse:
    try:
        event = await audit_repo.get_event_by_id(db, event_id=event_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit event") from exc
    if event is None:
        raise HTTPException(status_code=404, detail="Audit event not found")
    return _to_response(event)
