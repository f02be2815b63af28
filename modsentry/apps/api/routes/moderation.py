from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from modsentry.apps.api.deps import Principal, get_principal, get_services, require_role, role_allows
from modsentry.apps.api.errors import to_http_exception
from modsentry.core.errors import ModSentryError
from modsentry.domain.models import ModerationRecord
from modsentry.services.registry import ServiceRegistry


router = APIRouter(prefix="/moderation", tags=["moderation"])


class SubmitRequest(BaseModel):
    text: str = Field(min_length=1, max_length=10000)
    source_ref: str = Field(min_length=1, max_length=256)


class StateChangeRequest(BaseModel):
    state: Literal["pending", "approved", "rejected", "deleted"] | None = None
    override: bool = False


class ModerationRecordResponse(BaseModel):
    id: str
    text: str
    submitter_ref: str
    source_ref: str
    is_flagged: bool
    classified_at: str
    suggested_state: str
    state: str
    override_by: str | None
    override_at: str | None
    created_at: str
    updated_at: str


def _to_response(record: ModerationRecord) -> ModerationRecordResponse:
    # The serving credential stays internal; clients only see the verdict.
    return ModerationRecordResponse(
        id=record.id,
        text=record.text,
        submitter_ref=record.submitter_ref,
        source_ref=record.source_ref,
        is_flagged=record.is_flagged,
        classified_at=record.classified_at.isoformat(),
        suggested_state=record.suggested_state,
        state=record.state,
        override_by=record.override_by,
        override_at=record.override_at.isoformat() if record.override_at else None,
        created_at=record.created_at.isoformat(),
        updated_at=record.updated_at.isoformat(),
    )


def _is_moderator(principal: Principal) -> bool:
    return role_allows(role=principal.role, minimum_role="moderator")


@router.post("/records", status_code=status.HTTP_201_CREATED)
async def submit_text(
    payload: SubmitRequest,
    principal: Principal = Depends(get_principal),
    services: ServiceRegistry = Depends(get_services),
) -> ModerationRecordResponse:
    # Classify first; nothing is stored when classification fails.
    try:
        record = await services.moderation.create(payload.text, principal.actor_id, payload.source_ref)
    except (ModSentryError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return _to_response(record)


@router.get("/records")
async def list_records(
    source_ref: str | None = None,
    submitter_ref: str | None = None,
    state: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    services: ServiceRegistry = Depends(get_services),
) -> list[ModerationRecordResponse]:
    # Members only ever see their own submissions.
    if not _is_moderator(principal):
        if submitter_ref and submitter_ref != principal.actor_id:
            raise HTTPException(
                status_code=403,
                detail={"code": "AUTH_FORBIDDEN", "message": "Members can only list their own submissions"},
            )
        submitter_ref = principal.actor_id
    try:
        records = await services.moderation.list_records(
            source_ref=source_ref,
            submitter_ref=submitter_ref,
            state=state,
            limit=limit,
        )
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return [_to_response(record) for record in records]


@router.get("/records/{record_id}")
async def get_record(
    record_id: str,
    principal: Principal = Depends(get_principal),
    services: ServiceRegistry = Depends(get_services),
) -> ModerationRecordResponse:
    try:
        record = await services.moderation.get(record_id)
    except ModSentryError as exc:
        raise to_http_exception(exc) from exc
    if not _is_moderator(principal) and record.submitter_ref != principal.actor_id:
        # Hide existence of other members' records.
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Moderation record not found"})
    return _to_response(record)


@router.patch("/records/{record_id}/state")
async def change_state(
    record_id: str,
    payload: StateChangeRequest,
    principal: Principal = Depends(require_role("moderator")),
    services: ServiceRegistry = Depends(get_services),
) -> ModerationRecordResponse:
    try:
        record = await services.moderation.set_state(
            record_id,
            payload.state,
            principal.actor_id,
            override=payload.override,
        )
    except (ModSentryError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return _to_response(record)
