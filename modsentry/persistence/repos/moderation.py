from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from modsentry.domain.models import ModerationRecord


async def get_record(session: AsyncSession, record_id: str) -> ModerationRecord | None:
    result = await session.execute(select(ModerationRecord).where(ModerationRecord.id == record_id))
    return result.scalar_one_or_none()


async def compare_and_set_state(
    session: AsyncSession,
    record_id: str,
    *,
    expected_state: str,
    new_state: str,
    override_by: str | None = None,
    override_at: datetime | None = None,
) -> bool:
    # Guard on the observed state (and unused override) so racing writers cannot both win.
    stmt = update(ModerationRecord).where(
        ModerationRecord.id == record_id,
        ModerationRecord.state == expected_state,
    )
    values: dict[str, object] = {"state": new_state}
    if override_by is not None:
        stmt = stmt.where(ModerationRecord.override_by.is_(None))
        values["override_by"] = override_by
        values["override_at"] = override_at
    result = await session.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def list_records(
    session: AsyncSession,
    *,
    source_ref: str | None = None,
    submitter_ref: str | None = None,
    state: str | None = None,
    limit: int = 100,
) -> list[ModerationRecord]:
    stmt = select(ModerationRecord)
    if source_ref:
        stmt = stmt.where(ModerationRecord.source_ref == source_ref)
    if submitter_ref:
        stmt = stmt.where(ModerationRecord.submitter_ref == submitter_ref)
    if state:
        stmt = stmt.where(ModerationRecord.state == state)
    stmt = stmt.order_by(ModerationRecord.created_at.desc(), ModerationRecord.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
