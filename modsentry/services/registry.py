from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modsentry.persistence.db import SessionLocal
from modsentry.providers.classifier.base import ClassificationProvider
from modsentry.providers.classifier.factory import get_classification_provider
from modsentry.services.audit import AuditLog
from modsentry.services.credential_pool import CredentialPool
from modsentry.services.gateway import ClassificationGateway
from modsentry.services.moderation import ModerationService


@dataclass(frozen=True)
class ServiceRegistry:
    audit_log: AuditLog
    pool: CredentialPool
    gateway: ClassificationGateway
    moderation: ModerationService

    async def aclose(self) -> None:
        # Release the provider's pooled HTTP connections on shutdown.
        await self.gateway.aclose()


def build_services(
    *,
    provider: ClassificationProvider | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ServiceRegistry:
    # Wire one shared audit log through every component so both sinks see all events.
    factory = session_factory or SessionLocal
    audit_log = AuditLog(session_factory=factory)
    pool = CredentialPool(session_factory=factory, audit_log=audit_log)
    gateway = ClassificationGateway(
        pool,
        provider or get_classification_provider(),
        audit_log=audit_log,
    )
    moderation = ModerationService(gateway, session_factory=factory, audit_log=audit_log)
    return ServiceRegistry(audit_log=audit_log, pool=pool, gateway=gateway, moderation=moderation)
