from __future__ import annotations

from base64 import urlsafe_b64encode
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from modsentry.core.config import get_settings
from modsentry.core.errors import CredentialSecretError, EncryptionKeyMissing


def _build_fernet() -> Fernet:
    settings = get_settings()
    # Never fall back to plaintext storage when the key is missing.
    source = (settings.credential_encryption_key or "").strip()
    if not source:
        raise EncryptionKeyMissing("CREDENTIAL_ENCRYPTION_KEY is required to store provider credentials")
    digest = hashlib.sha256(source.encode("utf-8")).digest()
    return Fernet(urlsafe_b64encode(digest))


def encrypt_secret(secret: str) -> str:
    if not secret:
        raise CredentialSecretError("credential secret is empty")
    token = _build_fernet().encrypt(secret.encode("utf-8"))
    return str(token.decode("utf-8"))


def decrypt_secret(ciphertext: str) -> str:
    # Only the classification gateway calls this, immediately before a provider request.
    try:
        return _build_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise CredentialSecretError("credential secret could not be decrypted") from exc
