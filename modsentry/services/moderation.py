from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modsentry.core.config import get_settings
from modsentry.core.errors import (
    ClassificationFailed,
    EncryptionKeyMissing,
    InvalidTransition,
    NoCredentialAvailable,
    ProviderError,
    RecordNotFound,
)
from modsentry.domain.events import (
    CATEGORY_CLASSIFICATION,
    CATEGORY_CLASSIFICATION_FAILED,
    CATEGORY_MODERATION_OVERRIDE,
    CATEGORY_MODERATION_STATE_CHANGE,
    MODERATION_STATE_APPROVED,
    MODERATION_STATE_DELETED,
    MODERATION_STATE_PENDING,
    MODERATION_STATE_REJECTED,
    MODERATION_STATES,
    ModerationState,
    RESOURCE_MODERATION_RECORD,
    SEVERITY_ERROR,
    SEVERITY_INFO,
)
from modsentry.domain.models import ModerationRecord
from modsentry.persistence.db import SessionLocal
from modsentry.persistence.repos import moderation as moderation_repo
from modsentry.services.audit import AuditLog
from modsentry.services.gateway import ClassificationGateway, Verdict
from modsentry.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Ordinary transitions; approved <-> rejected is reachable only through an override.
_TRANSITIONS: dict[str, set[str]] = {
    MODERATION_STATE_PENDING: {MODERATION_STATE_APPROVED, MODERATION_STATE_REJECTED, MODERATION_STATE_DELETED},
    MODERATION_STATE_APPROVED: {MODERATION_STATE_DELETED},
    MODERATION_STATE_REJECTED: {MODERATION_STATE_DELETED},
    MODERATION_STATE_DELETED: set(),
}
_OVERRIDE_TARGETS: dict[str, str] = {
    MODERATION_STATE_APPROVED: MODERATION_STATE_REJECTED,
    MODERATION_STATE_REJECTED: MODERATION_STATE_APPROVED,
}


def transition_allowed(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, set())


def override_target(current: str) -> str | None:
    return _OVERRIDE_TARGETS.get(current)


def suggested_state_for(is_flagged: bool) -> str:
    return MODERATION_STATE_REJECTED if is_flagged else MODERATION_STATE_APPROVED


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ModerationService:
    def __init__(
        self,
        gateway: ClassificationGateway,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_log: AuditLog | None = None,
        max_attempts: int | None = None,
        time_source: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._session_factory = session_factory or SessionLocal
        self._audit = audit_log or AuditLog(session_factory=self._session_factory)
        attempts = max_attempts if max_attempts is not None else get_settings().classification_max_attempts
        self._max_attempts = max(1, int(attempts))
        self._now = time_source or _utc_now

    async def create(self, text: str, submitter_ref: str, source_ref: str) -> ModerationRecord:
        if not text or not text.strip():
            raise ValueError("text is required")

        verdict = await self._classify_with_retry(text, submitter_ref, source_ref)
        now = self._now()
        record = ModerationRecord(
            id=uuid4().hex,
            text=text,
            submitter_ref=submitter_ref,
            source_ref=source_ref,
            is_flagged=verdict.is_flagged,
            classified_at=verdict.classified_at,
            suggested_state=suggested_state_for(verdict.is_flagged),
            credential_id=verdict.credential_id,
            state=MODERATION_STATE_PENDING,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()

        await self._audit.append(
            category=CATEGORY_CLASSIFICATION,
            severity=SEVERITY_INFO,
            actor_ref=submitter_ref,
            message=f"Submission classified as {'flagged' if verdict.is_flagged else 'acceptable'}",
            resource_type=RESOURCE_MODERATION_RECORD,
            resource_id=record.id,
            metadata={
                "record_id": record.id,
                "source_ref": source_ref,
                "is_flagged": verdict.is_flagged,
                "suggested_state": record.suggested_state,
                "credential_id": verdict.credential_id,
                "model": verdict.model,
            },
        )
        return record

    async def set_state(
        self,
        record_id: str,
        new_state: ModerationState | None,
        actor_ref: str,
        override: bool = False,
    ) -> ModerationRecord:
        if not actor_ref:
            raise ValueError("actor_ref is required for moderation actions")
        if new_state is not None and new_state not in MODERATION_STATES:
            raise InvalidTransition(f"Unknown moderation state: {new_state}")
        if new_state is None and not override:
            raise InvalidTransition("A target state is required")

        async with self._session_factory() as session:
            record = await moderation_repo.get_record(session, record_id)
            if record is None:
                raise RecordNotFound(f"Moderation record not found: {record_id}")
            from_state = record.state

            if override:
                target = override_target(from_state)
                if target is None:
                    raise InvalidTransition(f"Only approved or rejected records can be overridden (state: {from_state})")
                if record.override_by is not None:
                    raise InvalidTransition("Record has already been overridden")
                if new_state is not None and new_state != target:
                    raise InvalidTransition(f"Override of a {from_state} record must target {target}")
                applied = await moderation_repo.compare_and_set_state(
                    session,
                    record_id,
                    expected_state=from_state,
                    new_state=target,
                    override_by=actor_ref,
                    override_at=self._now(),
                )
            else:
                target = new_state
                if not transition_allowed(from_state, target):
                    raise InvalidTransition(f"Transition {from_state} -> {target} is not allowed")
                applied = await moderation_repo.compare_and_set_state(
                    session,
                    record_id,
                    expected_state=from_state,
                    new_state=target,
                )

            if not applied:
                # Another writer moved the record between our read and the guarded update.
                await session.rollback()
                raise InvalidTransition("Record changed concurrently; reload and retry")
            await session.commit()
            await session.refresh(record)

        await self._audit.append(
            category=CATEGORY_MODERATION_OVERRIDE if override else CATEGORY_MODERATION_STATE_CHANGE,
            severity=SEVERITY_INFO,
            actor_ref=actor_ref,
            message=f"Moderation state {from_state} -> {target}" + (" (override)" if override else ""),
            resource_type=RESOURCE_MODERATION_RECORD,
            resource_id=record_id,
            metadata={
                "record_id": record_id,
                "from_state": from_state,
                "to_state": target,
                "override": override,
                "suggested_state": record.suggested_state,
            },
        )
        return record

    async def get(self, record_id: str) -> ModerationRecord:
        async with self._session_factory() as session:
            record = await moderation_repo.get_record(session, record_id)
        if record is None:
            raise RecordNotFound(f"Moderation record not found: {record_id}")
        return record

    async def list_records(
        self,
        *,
        source_ref: str | None = None,
        submitter_ref: str | None = None,
        state: str | None = None,
        limit: int = 100,
    ) -> list[ModerationRecord]:
        if state is not None and state not in MODERATION_STATES:
            raise ValueError(f"Unknown moderation state: {state}")
        async with self._session_factory() as session:
            return await moderation_repo.list_records(
                session,
                source_ref=source_ref,
                submitter_ref=submitter_ref,
                state=state,
                limit=max(1, min(limit, 100)),
            )

    async def _classify_with_retry(self, text: str, submitter_ref: str, source_ref: str) -> Verdict:
        attempt = 1
        while True:
            try:
                return await self._gateway.classify(text, submitter_ref)
            except EncryptionKeyMissing as exc:
                # Misconfiguration; no credential is blamed and retrying cannot help.
                await self._record_classification_failure(exc, submitter_ref, source_ref, attempt)
                raise
            except NoCredentialAvailable as exc:
                # Pool exhaustion is terminal for this submission.
                await self._record_classification_failure(exc, submitter_ref, source_ref, attempt)
                raise
            except ProviderError as exc:
                if attempt >= self._max_attempts:
                    await self._record_classification_failure(exc, submitter_ref, source_ref, attempt)
                    raise
                increment_counter("classification_retries_total")
                logger.warning(
                    "classification_retry attempt=%s credential_id=%s",
                    attempt,
                    exc.credential_id,
                )
            attempt += 1

    async def _record_classification_failure(
        self,
        exc: ClassificationFailed | EncryptionKeyMissing,
        submitter_ref: str,
        source_ref: str,
        attempts: int,
    ) -> None:
        logger.error("classification_failed code=%s attempts=%s", exc.code, attempts)
        await self._audit.append(
            category=CATEGORY_CLASSIFICATION_FAILED,
            severity=SEVERITY_ERROR,
            actor_ref=submitter_ref,
            message="Submission could not be classified; no record was created",
            metadata={
                "code": exc.code,
                "attempts": attempts,
                "source_ref": source_ref,
                "credential_id": getattr(exc, "credential_id", None),
            },
        )
