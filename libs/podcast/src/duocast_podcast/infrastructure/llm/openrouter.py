from __future__ import annotations

import httpx

from duocast_contracts.errors import ConfigurationError, InvalidOutputError
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)


class OpenRouterTextGenerator:
    """Client for OpenRouter chat completions."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "minimax/minimax-m2.1",
        timeout_s: float = 120.0,
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("openrouter requires OPENROUTER_API_KEY")
        self.api_key = api_key
        self.model = model
        self.name = "openrouter"
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        payload = {"model": self.model, "messages": messages, "max_tokens": max_tokens}
        log.info("openrouter.generate model=%s", self.model)
        r = await send(self._client, "POST", self.base_url, provider=self.name, json=payload, headers=headers)
        choices = r.json().get("choices") or []
        if not choices:
            raise InvalidOutputError("no choices returned from OpenRouter", provider=self.name)
        content = choices[0].get("message", {}).get("content") or ""
        return str(content).strip()

    async def aclose(self) -> None:
        await self._client.aclose()
