from __future__ import annotations

import httpx

from duocast_contracts.errors import ConfigurationError, InvalidOutputError
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)


class AnthropicTextGenerator:
    """Claude via the Messages API."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        name: str = "claude",
        timeout_s: float = 300.0,
        temperature: float = 0.7,
        base_url: str = "https://api.anthropic.com/v1/messages",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"{name} requires ANTHROPIC_API_KEY or a per-request anthropic key")
        self.api_key = api_key
        self.model = model
        self.name = name
        self.temperature = temperature
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=10.0))

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        payload: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system
        log.info("anthropic.generate model=%s max_tokens=%s", self.model, max_tokens)
        r = await send(self._client, "POST", self.base_url, provider=self.name, json=payload, headers=headers)
        data = r.json()
        parts = [b.get("text", "") for b in data.get("content") or [] if b.get("type") == "text"]
        text = "".join(parts).strip()
        if not text:
            raise InvalidOutputError("empty response from Claude", provider=self.name)
        if data.get("stop_reason") == "max_tokens":
            log.warning("anthropic.truncated model=%s", self.model)
        return text

    async def aclose(self) -> None:
        await self._client.aclose()
