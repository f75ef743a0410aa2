from __future__ import annotations

import httpx
import orjson
import pytest

from source_registry_core.config import Settings
from source_registry_core.llm import LlmClient, parse_json_object


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('Sure! Here you go: {"a": {"b": 2}} hope that helps', {"a": {"b": 2}}),
        ("[1, 2, 3]", None),
        ("not json", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_json_object(text: str | None, expected: dict | None) -> None:
    assert parse_json_object(text) == expected


def test_client_requires_config() -> None:
    with pytest.raises(ValueError) as exc:
        LlmClient(base_url="", api_key="", model="m")
    assert "LLM_BASE_URL" in str(exc.value)
    assert "LLM_API_KEY" in str(exc.value)
    assert "LLM_MODEL" not in str(exc.value)


def test_from_settings() -> None:
    settings = Settings.model_validate(
        {"LLM_BASE_URL": "https://llm.example", "LLM_API_KEY": "secret", "LLM_MODEL": "small"}
    )
    client = LlmClient.from_settings(settings)
    assert (client.base_url, client.api_key, client.model) == ("https://llm.example", "secret", "small")

    with pytest.raises(ValueError):
        LlmClient.from_settings(Settings.model_validate({}))


@pytest.mark.asyncio
async def test_complete_posts_chat_request() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": '  {"ok": true}  '}}]})

    client = LlmClient(
        base_url="https://llm.example/",
        api_key="secret",
        model="small",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    reply = await client.complete(system="sys", user="hello", temperature=0.3, max_tokens=50, json_mode=True)

    assert reply == '{"ok": true}'
    request = seen[0]
    assert str(request.url) == "https://llm.example/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = orjson.loads(request.content)
    assert body["model"] == "small"
    assert body["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hello"}]
    assert body["response_format"] == {"type": "json_object"}
    assert body["max_tokens"] == 50


@pytest.mark.asyncio
async def test_complete_rejects_missing_choices_and_http_errors() -> None:
    responses = [httpx.Response(200, json={"choices": []}), httpx.Response(500, text="boom")]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = LlmClient(
        base_url="https://llm.example",
        api_key="k",
        model="m",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(RuntimeError, match="missing choices"):
        await client.complete(system="s", user="u")
    with pytest.raises(httpx.HTTPStatusError):
        await client.complete(system="s", user="u")
