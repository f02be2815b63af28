from __future__ import annotations

from modsentry.core.config import get_settings
from modsentry.core.errors import ProviderConfigError
from modsentry.providers.classifier.base import ClassificationProvider
from modsentry.providers.classifier.fake import FakeClassificationProvider
from modsentry.providers.classifier.groq import GroqClassificationProvider


def get_classification_provider() -> ClassificationProvider:
    settings = get_settings()
    provider = (settings.classifier_provider or "groq").lower()

    if provider == "fake":
        return FakeClassificationProvider()
    if provider == "groq":
        return GroqClassificationProvider()
    raise ProviderConfigError(f"Unsupported classifier provider: {settings.classifier_provider}")
