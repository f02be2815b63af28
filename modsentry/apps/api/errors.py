from __future__ import annotations

from fastapi import HTTPException

from modsentry.core.errors import (
    CredentialNotFound,
    CredentialSecretError,
    CredentialStateError,
    EncryptionKeyMissing,
    InvalidTransition,
    ModSentryError,
    NoCredentialAvailable,
    ProviderConfigError,
    ProviderError,
    RecordNotFound,
)


# Most specific first; the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[Exception], int, str]] = [
    (NoCredentialAvailable, 503, "NO_CREDENTIAL_AVAILABLE"),
    (ProviderError, 502, "CLASSIFICATION_FAILED"),
    (InvalidTransition, 409, "INVALID_TRANSITION"),
    (RecordNotFound, 404, "NOT_FOUND"),
    (CredentialNotFound, 404, "NOT_FOUND"),
    (CredentialStateError, 409, "CONFLICT"),
    (EncryptionKeyMissing, 500, "ENCRYPTION_KEY_MISSING"),
    (CredentialSecretError, 400, "INVALID_CREDENTIAL_SECRET"),
    (ProviderConfigError, 500, "PROVIDER_NOT_CONFIGURED"),
    (ValueError, 400, "BAD_REQUEST"),
]


def to_http_exception(exc: Exception) -> HTTPException:
    # Translate domain errors into stable {code, message} contracts for API clients.
    for error_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})
    if isinstance(exc, ModSentryError):
        return HTTPException(status_code=500, detail={"code": "INTERNAL_ERROR", "message": "Request failed"})
    raise exc
