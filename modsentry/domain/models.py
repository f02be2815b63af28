from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (SQLite in dev/test).
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class CredentialRecord(Base):
    __tablename__ = "credentials"
    # Fetch server-side timestamps with the INSERT.
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_credentials_selection", "active", "failure_count", "last_used_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Operator-facing label; the secret itself is never displayed.
    name: Mapped[str] = mapped_column(String, unique=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    # Fernet token of the provider API key; decrypted only inside the gateway.
    secret_ciphertext: Mapped[str] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Reset to zero on success, incremented atomically on failure.
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Soft removal keeps audit references resolvable.
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ModerationRecord(Base):
    __tablename__ = "moderation_records"
    # Fetch server-side timestamps with the INSERT.
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_moderation_records_source_created", "source_ref", "created_at"),
        Index("ix_moderation_records_state_created", "state", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    text: Mapped[str] = mapped_column(Text)
    submitter_ref: Mapped[str] = mapped_column(String, index=True)
    source_ref: Mapped[str] = mapped_column(String)
    # Provider verdict: flagged is the inverse of the provider's "acceptable" status.
    is_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False)
    classified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    suggested_state: Mapped[str] = mapped_column(String)
    # Credential that produced the verdict, for attribution.
    credential_id: Mapped[str | None] = mapped_column(String, nullable=True)
    state: Mapped[str] = mapped_column(String, default="pending", nullable=False)
    # Set together, at most once per record.
    override_by: Mapped[str | None] = mapped_column(String, nullable=True)
    override_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"
    # Fetch server-side timestamps with the INSERT.
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_audit_events_category_occurred_at", "category", "occurred_at"),
        Index("ix_audit_events_resource", "resource_type", "resource_id"),
    )

    # Monotonic id keeps newest-first ordering stable for equal timestamps.
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    severity: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String, index=True)
    # Null for system-initiated events.
    actor_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    message: Mapped[str] = mapped_column(Text)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
