from __future__ import annotations

from typing import Any, Sequence

from modsentry.core.errors import ProviderCallError


class FakeClassificationProvider:
    name = "fake"

    def __init__(
        self,
        status: bool = True,
        *,
        script: Sequence[dict[str, Any] | Exception] | None = None,
    ) -> None:
        # Deterministic verdicts keep tests and local runs free of external calls.
        self._status = status
        self._script = list(script or [])
        self.calls: list[dict[str, Any]] = []

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
        self.calls.append(
            {
                "api_key": api_key,
                "system_prompt": system_prompt,
                "user_text": user_text,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self._script:
            step = self._script.pop(0)
            if isinstance(step, Exception):
                raise step
            return dict(step)
        return {"STATUS": self._status}

    async def aclose(self) -> None:
        return None


class FailingClassificationProvider(FakeClassificationProvider):
    def __init__(self, status_code: int = 503) -> None:
        super().__init__()
        self._status_code = status_code

    async def complete_json(self, **kwargs: Any) -> dict[str, Any]:
        await super().complete_json(**kwargs)
        raise ProviderCallError(f"fake provider error: {self._status_code}", status_code=self._status_code)
