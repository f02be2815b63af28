from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from modsentry.domain.models import CredentialRecord


def _selectable():
    return select(CredentialRecord).where(
        CredentialRecord.active.is_(True),
        CredentialRecord.removed_at.is_(None),
    )


async def select_candidate(session: AsyncSession) -> CredentialRecord | None:
    # Healthiest first, then least recently used; never-used keys count as oldest.
    stmt = (
        _selectable()
        .order_by(
            CredentialRecord.failure_count.asc(),
            CredentialRecord.last_used_at.asc().nulls_first(),
            CredentialRecord.created_at.asc(),
            CredentialRecord.id.asc(),
        )
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_credential(
    session: AsyncSession,
    credential_id: str,
    *,
    include_removed: bool = False,
) -> CredentialRecord | None:
    stmt = select(CredentialRecord).where(CredentialRecord.id == credential_id)
    if not include_removed:
        stmt = stmt.where(CredentialRecord.removed_at.is_(None))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def mark_success(session: AsyncSession, credential_id: str, *, used_at: datetime) -> bool:
    # Single-statement reset so concurrent reporters cannot lose updates.
    result = await session.execute(
        update(CredentialRecord)
        .where(CredentialRecord.id == credential_id)
        .values(failure_count=0, last_used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def increment_failures(session: AsyncSession, credential_id: str) -> int | None:
    # Atomic read-modify-write in the database; returns the post-increment count.
    result = await session.execute(
        update(CredentialRecord)
        .where(CredentialRecord.id == credential_id)
        .values(failure_count=CredentialRecord.failure_count + 1)
        .returning(CredentialRecord.failure_count)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def deactivate_if_tripped(
    session: AsyncSession,
    credential_id: str,
    *,
    threshold: int,
    deactivated_at: datetime,
) -> bool:
    # Conditional flip: exactly one concurrent caller observes the transition.
    result = await session.execute(
        update(CredentialRecord)
        .where(
            CredentialRecord.id == credential_id,
            CredentialRecord.active.is_(True),
            CredentialRecord.failure_count >= threshold,
        )
        .values(active=False, deactivated_at=deactivated_at)
        .returning(CredentialRecord.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def list_credentials(
    session: AsyncSession,
    *,
    active: bool | None = None,
    include_removed: bool = False,
    limit: int = 100,
) -> list[CredentialRecord]:
    stmt = select(CredentialRecord)
    if active is not None:
        stmt = stmt.where(CredentialRecord.active.is_(active))
    if not include_removed:
        stmt = stmt.where(CredentialRecord.removed_at.is_(None))
    stmt = stmt.order_by(CredentialRecord.created_at.desc(), CredentialRecord.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_by_status(session: AsyncSession) -> dict[str, int]:
    rows = (
        await session.execute(
            select(
                CredentialRecord.active,
                CredentialRecord.removed_at.is_not(None),
                func.count(),
            ).group_by(CredentialRecord.active, CredentialRecord.removed_at.is_not(None))
        )
    ).all()
    counts = {"active": 0, "inactive": 0, "removed": 0}
    for active, removed, total in rows:
        if removed:
            counts["removed"] += int(total)
        elif active:
            counts["active"] += int(total)
        else:
            counts["inactive"] += int(total)
    return counts
