from __future__ import annotations

import json

import httpx
import pytest

from modsentry.core.errors import ProviderCallError
from modsentry.providers.classifier.groq import GroqClassificationProvider


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


async def _complete(provider: GroqClassificationProvider) -> dict:
    return await provider.complete_json(
        api_key="sk-test",
        system_prompt="system",
        user_text="hello",
        model="llama-3.3-70b-versatile",
        temperature=0.2,
        max_tokens=100,
    )


@pytest.mark.asyncio
async def test_request_shape_and_parsed_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion('{"STATUS": true, "Author": "user-1"}'))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = GroqClassificationProvider(client, base_url="https://groq.test/openai/v1/")

    payload = await _complete(provider)
    await provider.aclose()

    assert payload == {"STATUS": True, "Author": "user-1"}
    request = seen[0]
    assert str(request.url) == "https://groq.test/openai/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0] == {"role": "system", "content": "system"}
    assert body["messages"][1] == {"role": "user", "content": "hello"}
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 100


@pytest.mark.asyncio
async def test_error_status_raises_with_code() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429)))
    provider = GroqClassificationProvider(client, base_url="https://groq.test")

    with pytest.raises(ProviderCallError) as exc_info:
        await _complete(provider)

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"choices": []},
        _completion("not json"),
        _completion("[true]"),
    ],
)
async def test_malformed_completion_raises(body: dict) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
    provider = GroqClassificationProvider(client, base_url="https://groq.test")

    with pytest.raises(ProviderCallError):
        await _complete(provider)


@pytest.mark.asyncio
async def test_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = GroqClassificationProvider(client, base_url="https://groq.test")

    with pytest.raises(ProviderCallError) as exc_info:
        await _complete(provider)

    assert exc_info.value.status_code is None
