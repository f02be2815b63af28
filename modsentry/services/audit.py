"""Append-only audit trail for credential and moderation events.

Every event goes to two sinks: the operational log stream (``modsentry.audit``
logger, filtered by minimum severity) and the ``audit_events`` table. The table
write is best-effort: a failure is reported on the operational stream and never
raised to the caller, so recording an action cannot abort the action itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modsentry.core.config import get_settings
from modsentry.core.errors import AuditPersistenceFailure
from modsentry.domain.events import AUDIT_CATEGORIES, SEVERITY_INFO, SEVERITY_ORDER
from modsentry.domain.models import AuditEvent
from modsentry.persistence.db import SessionLocal
from modsentry.persistence.repos import audit as audit_repo
from modsentry.services.telemetry import increment_counter


stream_logger = logging.getLogger("modsentry.audit")

_SENSITIVE_KEY_PATTERNS = ["api_key", "apikey", "authorization", "token", "secret", "password", "ciphertext"]
_REDACTED_VALUE = "[REDACTED]"

_STREAM_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite stores wall-clock text, so every timestamp is compared in UTC; naive means UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub secret-bearing keys while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


@dataclass(frozen=True)
class AuditQuery:
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None
    category: str | None = None
    actor_ref: str | None = None
    severity: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    # Case-insensitive substring over the event message.
    text: str | None = None
    offset: int = 0
    limit: int = 50


class AuditLog:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        min_stream_severity: str | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        threshold = (min_stream_severity or get_settings().audit_stream_min_severity).lower()
        if threshold not in SEVERITY_ORDER:
            raise ValueError(f"Unsupported audit severity: {threshold}")
        self._min_stream_rank = SEVERITY_ORDER[threshold]

    async def append(
        self,
        *,
        category: str,
        message: str,
        severity: str = SEVERITY_INFO,
        actor_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> AuditEvent:
        if category not in AUDIT_CATEGORIES:
            raise ValueError(f"Unsupported audit category: {category}")
        if severity not in SEVERITY_ORDER:
            raise ValueError(f"Unsupported audit severity: {severity}")

        event = AuditEvent(
            occurred_at=_as_utc(occurred_at) or datetime.now(timezone.utc),
            severity=severity,
            category=category,
            actor_ref=actor_ref,
            message=message,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata_json=sanitize_metadata(metadata or {}),
        )
        self._emit_stream(event)
        try:
            await self._persist(event)
        except AuditPersistenceFailure as exc:
            # Secondary sink failure stays on the operational stream only.
            increment_counter("audit_persist_failures_total")
            stream_logger.error(
                "audit_persist_failed category=%s resource=%s:%s",
                event.category,
                event.resource_type or "-",
                event.resource_id or "-",
                exc_info=exc,
            )
        return event

    def _emit_stream(self, event: AuditEvent) -> None:
        if SEVERITY_ORDER[event.severity] < self._min_stream_rank:
            return
        stream_logger.log(
            _STREAM_LEVELS[event.severity],
            "audit_event category=%s actor=%s resource=%s:%s message=%s metadata=%s",
            event.category,
            event.actor_ref or "system",
            event.resource_type or "-",
            event.resource_id or "-",
            event.message,
            json.dumps(event.metadata_json or {}, sort_keys=True, default=str),
        )

    async def _persist(self, event: AuditEvent) -> None:
        try:
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise AuditPersistenceFailure(f"audit event not persisted: {event.category}") from exc

    async def query(self, filters: AuditQuery | None = None) -> list[AuditEvent]:
        filters = filters or AuditQuery()
        max_limit = get_settings().audit_query_max_limit
        async with self._session_factory() as session:
            return await audit_repo.list_events(
                session,
                category=filters.category,
                actor_ref=filters.actor_ref,
                severity=filters.severity,
                resource_type=filters.resource_type,
                resource_id=filters.resource_id,
                text=filters.text,
                occurred_from=_as_utc(filters.occurred_from),
                occurred_to=_as_utc(filters.occurred_to),
                offset=max(0, filters.offset),
                limit=max(1, min(filters.limit, max_limit)),
            )
