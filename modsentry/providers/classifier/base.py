from __future__ import annotations

from typing import Any, Protocol


class ClassificationProvider(Protocol):
    name: str

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
        ...

    async def aclose(self) -> None:
        ...
