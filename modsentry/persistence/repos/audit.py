from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from modsentry.domain.models import AuditEvent


async def list_events(
    session: AsyncSession,
    *,
    category: str | None = None,
    actor_ref: str | None = None,
    severity: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    text: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if category:
        stmt = stmt.where(AuditEvent.category == category)
    if actor_ref:
        stmt = stmt.where(AuditEvent.actor_ref == actor_ref)
    if severity:
        stmt = stmt.where(AuditEvent.severity == severity)
    if resource_type:
        stmt = stmt.where(AuditEvent.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditEvent.resource_id == resource_id)
    if text:
        # Case-insensitive substring match; LIKE wildcards in the input are literal.
        escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        stmt = stmt.where(func.lower(AuditEvent.message).like(f"%{escaped}%", escape="\\"))
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_event_by_id(session: AsyncSession, *, event_id: int) -> AuditEvent | None:
    result = await session.execute(select(AuditEvent).where(AuditEvent.id == event_id))
    return result.scalar_one_or_none()
