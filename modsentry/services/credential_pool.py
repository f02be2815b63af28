"""Credential pool for the classification provider.

Selection prefers the healthiest credential (lowest ``failure_count``) and then
the least recently used one, which spreads load and risk across keys. Health
updates are single SQL statements so concurrent classify calls never lose an
increment, and no in-process lock is held. A credential whose failure
count reaches the threshold is deactivated and stays out of rotation until an
administrator reactivates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modsentry.core.config import get_settings
from modsentry.core.errors import CredentialNotFound, CredentialStateError, NoCredentialAvailable
from modsentry.domain.events import (
    CATEGORY_CREDENTIAL_CREATED,
    CATEGORY_CREDENTIAL_DEACTIVATED,
    CATEGORY_CREDENTIAL_REACTIVATED,
    CATEGORY_CREDENTIAL_REMOVED,
    RESOURCE_CREDENTIAL,
    SEVERITY_INFO,
    SEVERITY_WARN,
)
from modsentry.domain.models import CredentialRecord
from modsentry.persistence.db import SessionLocal
from modsentry.persistence.repos import credentials as credentials_repo
from modsentry.services.audit import AuditLog
from modsentry.services.crypto.secrets import encrypt_secret
from modsentry.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialHandle:
    # Returned by acquire(); the secret stays encrypted until the gateway uses it.
    id: str
    name: str
    failure_count: int
    last_used_at: datetime | None
    secret_ciphertext: str = field(repr=False)


@dataclass(frozen=True)
class CredentialView:
    # Admin-facing projection; carries no secret material at all.
    id: str
    name: str
    description: str | None
    active: bool
    failure_count: int
    last_used_at: datetime | None
    deactivated_at: datetime | None
    removed_at: datetime | None
    created_by: str | None
    updated_by: str | None
    created_at: datetime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_credential_id() -> str:
    return f"cred_{uuid4().hex}"


def _to_view(row: CredentialRecord) -> CredentialView:
    return CredentialView(
        id=row.id,
        name=row.name,
        description=row.description,
        active=row.active,
        failure_count=row.failure_count,
        last_used_at=row.last_used_at,
        deactivated_at=row.deactivated_at,
        removed_at=row.removed_at,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
    )


class CredentialPool:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_log: AuditLog | None = None,
        failure_threshold: int | None = None,
        time_source: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._audit = audit_log or AuditLog(session_factory=self._session_factory)
        threshold = failure_threshold if failure_threshold is not None else get_settings().credential_failure_threshold
        self._failure_threshold = max(1, int(threshold))
        self._now = time_source or _utc_now

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    async def acquire(self) -> CredentialHandle:
        async with self._session_factory() as session:
            row = await credentials_repo.select_candidate(session)
        if row is None:
            increment_counter("credential_pool_exhausted_total")
            logger.error("credential_pool_exhausted")
            raise NoCredentialAvailable("No active credentials available")
        return CredentialHandle(
            id=row.id,
            name=row.name,
            failure_count=row.failure_count,
            last_used_at=row.last_used_at,
            secret_ciphertext=row.secret_ciphertext,
        )

    async def report_success(self, credential_id: str) -> None:
        async with self._session_factory() as session:
            updated = await credentials_repo.mark_success(session, credential_id, used_at=self._now())
            await session.commit()
        if not updated:
            logger.warning("credential_success_unknown credential_id=%s", credential_id)

    async def report_failure(self, credential_id: str) -> int:
        async with self._session_factory() as session:
            failure_count = await credentials_repo.increment_failures(session, credential_id)
            if failure_count is None:
                await session.rollback()
                logger.warning("credential_failure_unknown credential_id=%s", credential_id)
                return 0
            tripped = False
            if failure_count >= self._failure_threshold:
                tripped = await credentials_repo.deactivate_if_tripped(
                    session,
                    credential_id,
                    threshold=self._failure_threshold,
                    deactivated_at=self._now(),
                )
            await session.commit()

        logger.warning(
            "credential_failure credential_id=%s failure_count=%s threshold=%s",
            credential_id,
            failure_count,
            self._failure_threshold,
        )
        if tripped:
            increment_counter("credential_deactivated_total")
            await self._audit.append(
                category=CATEGORY_CREDENTIAL_DEACTIVATED,
                severity=SEVERITY_WARN,
                message="Credential deactivated after repeated provider failures",
                resource_type=RESOURCE_CREDENTIAL,
                resource_id=credential_id,
                metadata={
                    "credential_id": credential_id,
                    "failure_count": failure_count,
                    "threshold": self._failure_threshold,
                    "reason": "failure_threshold",
                },
            )
        return failure_count

    async def add_credential(
        self,
        *,
        name: str,
        secret: str,
        actor_ref: str | None,
        description: str | None = None,
    ) -> CredentialView:
        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Credential name is required")
        now = self._now()
        row = CredentialRecord(
            id=_new_credential_id(),
            name=normalized_name,
            description=description,
            secret_ciphertext=encrypt_secret(secret),
            active=True,
            failure_count=0,
            created_by=actor_ref,
            updated_by=actor_ref,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise CredentialStateError(f"Credential name already exists: {normalized_name}") from exc
        await self._audit.append(
            category=CATEGORY_CREDENTIAL_CREATED,
            severity=SEVERITY_INFO,
            actor_ref=actor_ref,
            message=f"Credential added: {normalized_name}",
            resource_type=RESOURCE_CREDENTIAL,
            resource_id=row.id,
            metadata={"credential_id": row.id, "name": normalized_name},
        )
        return _to_view(row)

    async def deactivate(self, credential_id: str, *, actor_ref: str | None) -> CredentialView:
        async with self._session_factory() as session:
            row = await self._require(session, credential_id)
            changed = row.active
            if changed:
                row.active = False
                row.deactivated_at = self._now()
                row.updated_by = actor_ref
                await session.commit()
            view = _to_view(row)
        if changed:
            await self._audit.append(
                category=CATEGORY_CREDENTIAL_DEACTIVATED,
                severity=SEVERITY_INFO,
                actor_ref=actor_ref,
                message=f"Credential deactivated by administrator: {view.name}",
                resource_type=RESOURCE_CREDENTIAL,
                resource_id=credential_id,
                metadata={"credential_id": credential_id, "reason": "manual"},
            )
        return view

    async def reactivate(self, credential_id: str, *, actor_ref: str | None) -> CredentialView:
        # The only path back into rotation; clears the breaker's failure count.
        async with self._session_factory() as session:
            row = await self._require(session, credential_id)
            previous_failures = row.failure_count
            changed = not row.active or previous_failures != 0
            if changed:
                row.active = True
                row.failure_count = 0
                row.deactivated_at = None
                row.updated_by = actor_ref
                await session.commit()
            view = _to_view(row)
        if changed:
            await self._audit.append(
                category=CATEGORY_CREDENTIAL_REACTIVATED,
                severity=SEVERITY_INFO,
                actor_ref=actor_ref,
                message=f"Credential reactivated: {view.name}",
                resource_type=RESOURCE_CREDENTIAL,
                resource_id=credential_id,
                metadata={"credential_id": credential_id, "previous_failure_count": previous_failures},
            )
        return view

    async def remove(self, credential_id: str, *, actor_ref: str | None) -> CredentialView:
        # Soft removal keeps audit history resolvable; only inactive keys can be removed.
        async with self._session_factory() as session:
            row = await self._require(session, credential_id)
            if row.active:
                raise CredentialStateError("Deactivate the credential before removing it")
            row.removed_at = self._now()
            row.updated_by = actor_ref
            await session.commit()
            view = _to_view(row)
        await self._audit.append(
            category=CATEGORY_CREDENTIAL_REMOVED,
            severity=SEVERITY_INFO,
            actor_ref=actor_ref,
            message=f"Credential removed: {view.name}",
            resource_type=RESOURCE_CREDENTIAL,
            resource_id=credential_id,
            metadata={"credential_id": credential_id},
        )
        return view

    async def get(self, credential_id: str) -> CredentialView:
        async with self._session_factory() as session:
            row = await self._require(session, credential_id)
            return _to_view(row)

    async def list_credentials(
        self,
        *,
        active: bool | None = None,
        include_removed: bool = False,
        limit: int = 100,
    ) -> list[CredentialView]:
        async with self._session_factory() as session:
            rows = await credentials_repo.list_credentials(
                session,
                active=active,
                include_removed=include_removed,
                limit=max(1, min(limit, 200)),
            )
        return [_to_view(row) for row in rows]

    async def stats(self) -> dict[str, int]:
        async with self._session_factory() as session:
            return await credentials_repo.count_by_status(session)

    async def _require(self, session: AsyncSession, credential_id: str) -> CredentialRecord:
        row = await credentials_repo.get_credential(session, credential_id)
        if row is None:
            raise CredentialNotFound(f"Credential not found: {credential_id}")
        return row
