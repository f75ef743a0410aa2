from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import orjson

from source_registry_core.config import Settings


class ChatModel(Protocol):
    async def complete(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str: ...


def _extract_message_content(payload: dict[str, Any]) -> str:
    choices = payload.get("choices") or []
    if not isinstance(choices, list) or not choices:
        raise RuntimeError("OpenAI response missing choices")
    first = choices[0] if isinstance(choices[0], dict) else {}
    msg = first.get("message") if isinstance(first.get("message"), dict) else {}
    content = msg.get("content")
    if isinstance(content, str):
        return content.strip()
    # Some backends return `text` on the choice itself.
    text = first.get("text")
    return text.strip() if isinstance(text, str) else ""


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_object(text: str | None) -> dict[str, Any] | None:
    """
    Model output is untrusted: returns the first JSON object found, or None.
    """
    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text.strip())
    for candidate in (cleaned, *(m.group(0) for m in _OBJECT_RE.finditer(cleaned))):
        try:
            value = orjson.loads(candidate)
        except orjson.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


@dataclass(frozen=True)
class LlmClient:
    """Async client for an OpenAI-compatible `/v1/chat/completions` endpoint."""

    base_url: str
    api_key: str
    model: str
    timeout_s: float = 120.0
    client: httpx.AsyncClient | None = None

    def __post_init__(self) -> None:
        missing = []
        if not self.base_url:
            missing.append("LLM_BASE_URL")
        if not self.api_key:
            missing.append("LLM_API_KEY")
        if not self.model:
            missing.append("LLM_MODEL")
        if missing:
            raise ValueError(f"Missing LLM config: {', '.join(missing)}")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

    @classmethod
    def from_settings(cls, settings: Settings) -> LlmClient:
        return cls(
            base_url=settings.llm_base_url or "",
            api_key=settings.llm_api_key.get_secret_value() if settings.llm_api_key else "",
            model=settings.llm_model,
            timeout_s=settings.llm_timeout_s,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def complete(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        url = self.base_url.rstrip("/") + "/v1/chat/completions"
        if self.client is not None:
            r = await self.client.post(url, headers=self._headers(), json=body, timeout=self.timeout_s)
            r.raise_for_status()
            return _extract_message_content(r.json())
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            r = await client.post(url, headers=self._headers(), json=body)
            r.raise_for_status()
            return _extract_message_content(r.json())
