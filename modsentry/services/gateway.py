from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import time
from typing import Any, Callable

from modsentry.core.config import get_settings
from modsentry.core.errors import CredentialSecretError, EncryptionKeyMissing, ProviderCallError, ProviderError
from modsentry.domain.events import CATEGORY_CREDENTIAL_FAILOVER, RESOURCE_CREDENTIAL, SEVERITY_WARN
from modsentry.providers.classifier.base import ClassificationProvider
from modsentry.providers.classifier.factory import get_classification_provider
from modsentry.services.audit import AuditLog
from modsentry.services.credential_pool import CredentialHandle, CredentialPool
from modsentry.services.crypto.secrets import decrypt_secret
from modsentry.services.telemetry import increment_counter, record_provider_call


logger = logging.getLogger(__name__)

_SYSTEM_PROMPT_TEMPLATE = (
    "You are an assistant that checks if a given comment is toxic or not. "
    'You ONLY reply in JSON format like this: {{"STATUS": boolean_value, "Author": {author}}} '
    "where STATUS is true if it's okay to post. Base the result on the INTENT of the message. "
    "Do not add any other text outside the JSON structure."
)


@dataclass(frozen=True)
class Verdict:
    is_flagged: bool
    classified_at: datetime
    credential_id: str
    model: str


def build_system_prompt(submitter_ref: str) -> str:
    # JSON-encode the author so quotes in a username cannot break the instruction.
    return _SYSTEM_PROMPT_TEMPLATE.format(author=json.dumps(submitter_ref))


def parse_status(payload: dict[str, Any]) -> bool:
    # STATUS true means the text is acceptable; anything but a JSON boolean is malformed.
    status = payload.get("STATUS", payload.get("status"))
    if not isinstance(status, bool):
        raise ValueError("provider response is missing a boolean STATUS")
    return status


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ClassificationGateway:
    def __init__(
        self,
        pool: CredentialPool,
        provider: ClassificationProvider | None = None,
        *,
        audit_log: AuditLog | None = None,
        timeout_s: float | None = None,
        time_source: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._pool = pool
        self._provider = provider or get_classification_provider()
        self._audit = audit_log or AuditLog()
        self._timeout_s = timeout_s if timeout_s is not None else settings.classifier_timeout_s
        self._model = settings.classifier_model
        self._temperature = settings.classifier_temperature
        self._max_tokens = settings.classifier_max_tokens
        self._now = time_source or _utc_now

    async def classify(self, text: str, submitter_ref: str) -> Verdict:
        # NoCredentialAvailable propagates before any provider call is made.
        credential = await self._pool.acquire()
        start = time.monotonic()
        try:
            api_key = decrypt_secret(credential.secret_ciphertext)
            payload = await asyncio.wait_for(
                self._provider.complete_json(
                    api_key=api_key,
                    system_prompt=build_system_prompt(submitter_ref),
                    user_text=text,
                    model=self._model,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                ),
                timeout=self._timeout_s,
            )
            status = parse_status(payload)
        except EncryptionKeyMissing:
            # Deployment misconfiguration, not a fault of this credential.
            raise
        except (ProviderCallError, CredentialSecretError, TimeoutError, OSError, ValueError) as exc:
            await self._record_failure(credential, exc, start, submitter_ref)
            raise ProviderError(
                f"Classification failed with credential {credential.id}",
                credential_id=credential.id,
            ) from exc

        await self._pool.report_success(credential.id)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_provider_call(
            provider=self._provider.name,
            credential_id=credential.id,
            latency_ms=latency_ms,
            success=True,
        )
        logger.info(
            "classification_complete credential_id=%s latency_ms=%.1f flagged=%s",
            credential.id,
            latency_ms,
            not status,
        )
        return Verdict(
            is_flagged=not status,
            classified_at=self._now(),
            credential_id=credential.id,
            model=self._model,
        )

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def _record_failure(
        self,
        credential: CredentialHandle,
        exc: Exception,
        start: float,
        submitter_ref: str,
    ) -> None:
        failure_count = await self._pool.report_failure(credential.id)
        record_provider_call(
            provider=self._provider.name,
            credential_id=credential.id,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        increment_counter("classification_provider_failures_total")
        error_type = "timeout" if isinstance(exc, TimeoutError) else type(exc).__name__
        status_code = getattr(exc, "status_code", None)
        logger.warning(
            "classification_provider_failed credential_id=%s error=%s status_code=%s failure_count=%s",
            credential.id,
            error_type,
            status_code,
            failure_count,
        )
        await self._audit.append(
            category=CATEGORY_CREDENTIAL_FAILOVER,
            severity=SEVERITY_WARN,
            message="Provider call failed; next attempt may select another credential",
            resource_type=RESOURCE_CREDENTIAL,
            resource_id=credential.id,
            metadata={
                "credential_id": credential.id,
                "failure_count": failure_count,
                "error": error_type,
                "status_code": status_code,
                "submitter_ref": submitter_ref,
            },
        )
