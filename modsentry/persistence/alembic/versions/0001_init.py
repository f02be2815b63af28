"""initial moderation schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Provider credential pool with breaker state kept beside the encrypted secret.
    op.create_table(
        "credentials",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("secret_ciphertext", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_credentials_selection",
        "credentials",
        ["active", "failure_count", "last_used_at"],
        unique=False,
    )

    op.create_table(
        "moderation_records",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("submitter_ref", sa.String(), nullable=False),
        sa.Column("source_ref", sa.String(), nullable=False),
        sa.Column("is_flagged", sa.Boolean(), nullable=False),
        sa.Column("classified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("suggested_state", sa.String(), nullable=False),
        sa.Column("credential_id", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=False, server_default="pending"),
        sa.Column("override_by", sa.String(), nullable=True),
        sa.Column("override_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_moderation_records_submitter_ref", "moderation_records", ["submitter_ref"], unique=False)
    op.create_index(
        "ix_moderation_records_source_created",
        "moderation_records",
        ["source_ref", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_moderation_records_state_created",
        "moderation_records",
        ["state", "created_at"],
        unique=False,
    )

    # Append-only audit trail; rows are never updated after insert.
    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("actor_ref", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_audit_events_category", "audit_events", ["category"], unique=False)
    op.create_index("ix_audit_events_actor_ref", "audit_events", ["actor_ref"], unique=False)
    op.create_index(
        "ix_audit_events_category_occurred_at",
        "audit_events",
        ["category", "occurred_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_events_resource",
        "audit_events",
        ["resource_type", "resource_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_audit_events_resource", table_name="audit_events")
    op.drop_index("ix_audit_events_category_occurred_at", table_name="audit_events")
    op.drop_index("ix_audit_events_actor_ref", table_name="audit_events")
    op.drop_index("ix_audit_events_category", table_name="audit_events")
    op.drop_index("ix_audit_events_occurred_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_moderation_records_state_created", table_name="moderation_records")
    op.drop_index("ix_moderation_records_source_created", table_name="moderation_records")
    op.drop_index("ix_moderation_records_submitter_ref", table_name="moderation_records")
    op.drop_table("moderation_records")
    op.drop_index("ix_credentials_selection", table_name="credentials")
    op.drop_table("credentials")
