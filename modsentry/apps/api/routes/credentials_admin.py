from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from modsentry.apps.api.deps import Principal, get_services, require_role
from modsentry.apps.api.errors import to_http_exception
from modsentry.core.errors import ModSentryError
from modsentry.services.credential_pool import CredentialView
from modsentry.services.registry import ServiceRegistry
from modsentry.services.telemetry import provider_latency


router = APIRouter(prefix="/admin/credentials", tags=["credentials"])


class CredentialCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    secret: str = Field(min_length=1, max_length=512)
    description: str | None = Field(default=None, max_length=512)


class CredentialResponse(BaseModel):
    id: str
    name: str
    description: str | None
    active: bool
    failure_count: int
    last_used_at: str | None
    deactivated_at: str | None
    removed_at: str | None
    created_by: str | None
    updated_by: str | None
    created_at: str


class CredentialStatsResponse(BaseModel):
    active: int
    inactive: int
    removed: int
    failure_threshold: int
    provider_latency: dict[str, dict[str, float | int | None]]


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _to_response(view: CredentialView) -> CredentialResponse:
    # Secret material never leaves the pool; only rotation metadata is returned.
    return CredentialResponse(
        id=view.id,
        name=view.name,
        description=view.description,
        active=view.active,
        failure_count=view.failure_count,
        last_used_at=_iso(view.last_used_at),
        deactivated_at=_iso(view.deactivated_at),
        removed_at=_iso(view.removed_at),
        created_by=view.created_by,
        updated_by=view.updated_by,
        created_at=view.created_at.isoformat(),
    )


@router.get("")
async def list_credentials(
    active: bool | None = None,
    include_removed: bool = False,
    limit: int = Query(default=100, ge=1, le=200),
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> list[CredentialResponse]:
    views = await services.pool.list_credentials(active=active, include_removed=include_removed, limit=limit)
    return [_to_response(view) for view in views]


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_credential(
    payload: CredentialCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialResponse:
    try:
        view = await services.pool.add_credential(
            name=payload.name,
            secret=payload.secret,
            description=payload.description,
            actor_ref=principal.actor_id,
        )
    except (ModSentryError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.get("/stats")
async def credential_stats(
    window_s: int = Query(default=300, ge=1, le=86400),
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialStatsResponse:
    counts = await services.pool.stats()
    return CredentialStatsResponse(
        active=counts["active"],
        inactive=counts["inactive"],
        removed=counts["removed"],
        failure_threshold=services.pool.failure_threshold,
        provider_latency=provider_latency(window_s),
    )


@router.get("/{credential_id}")
async def get_credential(
    credential_id: str,
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialResponse:
    try:
        view = await services.pool.get(credential_id)
    except ModSentryError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.post("/{credential_id}/deactivate")
async def deactivate_credential(
    credential_id: str,
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialResponse:
    try:
        view = await services.pool.deactivate(credential_id, actor_ref=principal.actor_id)
    except ModSentryError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.post("/{credential_id}/reactivate")
async def reactivate_credential(
    credential_id: str,
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialResponse:
    try:
        view = await services.pool.reactivate(credential_id, actor_ref=principal.actor_id)
    except ModSentryError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.delete("/{credential_id}")
async def remove_credential(
    credential_id: str,
    principal: Principal = Depends(require_role("admin")),
    services: ServiceRegistry = Depends(get_services),
) -> CredentialResponse:
    try:
        view = await services.pool.remove(credential_id, actor_ref=principal.actor_id)
    except ModSentryError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)
