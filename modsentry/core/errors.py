from __future__ import annotations


class ModSentryError(Exception):
    """Base error for modsentry."""


class ProviderConfigError(ModSentryError):
    """Missing or invalid classification provider configuration."""


class ProviderCallError(ModSentryError):
    """A single provider request failed (transport, status, or payload)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClassificationFailed(ModSentryError):
    """Text could not be classified; no verdict exists."""

    code = "CLASSIFICATION_FAILED"


class NoCredentialAvailable(ClassificationFailed):
    """The credential pool has no active credential to hand out."""

    code = "NO_CREDENTIAL_AVAILABLE"


class ProviderError(ClassificationFailed):
    """The provider call made with one credential failed."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, credential_id: str | None = None) -> None:
        super().__init__(message)
        self.credential_id = credential_id


class InvalidTransition(ModSentryError):
    """Moderation state change rejected by the state machine."""


class RecordNotFound(ModSentryError):
    """Moderation record does not exist."""


class CredentialNotFound(ModSentryError):
    """Credential does not exist or was removed."""


class CredentialSecretError(ModSentryError):
    """Credential secret could not be encrypted or decrypted."""


class EncryptionKeyMissing(CredentialSecretError):
    """CREDENTIAL_ENCRYPTION_KEY is not configured."""

    code = "ENCRYPTION_KEY_MISSING"


class AuditPersistenceFailure(ModSentryError):
    """Persisted audit write failed; logged and never propagated."""


class CredentialStateError(ModSentryError):
    """Administrative credential change conflicts with its current state."""
