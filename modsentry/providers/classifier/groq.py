from __future__ import annotations

import json
from typing import Any

import httpx

from modsentry.core.config import get_settings
from modsentry.core.errors import ProviderCallError


class GroqClassificationProvider:
    """Groq chat completions through its OpenAI-compatible HTTP API.

    The API key is supplied per call because the credential pool decides which
    key each request uses; the shared ``httpx.AsyncClient`` never holds one.
    """

    name = "groq"

    def __init__(self, client: httpx.AsyncClient | None = None, *, base_url: str | None = None) -> None:
        self._settings = get_settings()
        self._client = client
        self._base_url = (base_url or self._settings.classifier_base_url).rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._settings.classifier_timeout_s)
        return self._client

    async def complete_json(
        self,
        *,
        api_key: str,
        system_prompt: str,
        user_text: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            "response_format": {"type": "json_object"},
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        client = self._get_client()
        try:
            response = await client.post(f"{self._base_url}/chat/completions", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderCallError(f"Groq request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise ProviderCallError(f"Groq error: {response.status_code}", status_code=response.status_code)

        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderCallError("Groq returned a malformed completion", status_code=response.status_code) from exc
        if not isinstance(parsed, dict):
            raise ProviderCallError("Groq completion is not a JSON object", status_code=response.status_code)
        return parsed

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
