from __future__ import annotations

from typing import Literal


MODERATION_STATE_PENDING = "pending"
MODERATION_STATE_APPROVED = "approved"
MODERATION_STATE_REJECTED = "rejected"
MODERATION_STATE_DELETED = "deleted"

MODERATION_STATES = frozenset(
    {
        MODERATION_STATE_PENDING,
        MODERATION_STATE_APPROVED,
        MODERATION_STATE_REJECTED,
        MODERATION_STATE_DELETED,
    }
)

ModerationState = Literal["pending", "approved", "rejected", "deleted"]

SEVERITY_DEBUG = "debug"
SEVERITY_INFO = "info"
SEVERITY_WARN = "warn"
SEVERITY_ERROR = "error"

# Ordered lowest to highest for minimum-severity filtering.
SEVERITY_ORDER: dict[str, int] = {
    SEVERITY_DEBUG: 10,
    SEVERITY_INFO: 20,
    SEVERITY_WARN: 30,
    SEVERITY_ERROR: 40,
}

CATEGORY_CLASSIFICATION = "CLASSIFICATION"
CATEGORY_CLASSIFICATION_FAILED = "CLASSIFICATION_FAILED"
CATEGORY_CREDENTIAL_FAILOVER = "CREDENTIAL_FAILOVER"
CATEGORY_CREDENTIAL_DEACTIVATED = "CREDENTIAL_DEACTIVATED"
CATEGORY_CREDENTIAL_REACTIVATED = "CREDENTIAL_REACTIVATED"
CATEGORY_CREDENTIAL_CREATED = "CREDENTIAL_CREATED"
CATEGORY_CREDENTIAL_REMOVED = "CREDENTIAL_REMOVED"
CATEGORY_MODERATION_STATE_CHANGE = "MODERATION_STATE_CHANGE"
CATEGORY_MODERATION_OVERRIDE = "MODERATION_OVERRIDE"
CATEGORY_SYSTEM = "SYSTEM"

AUDIT_CATEGORIES = frozenset(
    {
        CATEGORY_CLASSIFICATION,
        CATEGORY_CLASSIFICATION_FAILED,
        CATEGORY_CREDENTIAL_FAILOVER,
        CATEGORY_CREDENTIAL_DEACTIVATED,
        CATEGORY_CREDENTIAL_REACTIVATED,
        CATEGORY_CREDENTIAL_CREATED,
        CATEGORY_CREDENTIAL_REMOVED,
        CATEGORY_MODERATION_STATE_CHANGE,
        CATEGORY_MODERATION_OVERRIDE,
        CATEGORY_SYSTEM,
    }
)

RESOURCE_CREDENTIAL = "credential"
RESOURCE_MODERATION_RECORD = "moderation_record"
