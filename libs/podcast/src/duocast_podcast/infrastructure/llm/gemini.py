from __future__ import annotations

import httpx

from duocast_contracts.errors import ConfigurationError, InvalidOutputError
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models/"


class GeminiTextGenerator:
    """Gemini text models over the REST generateContent endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        name: str = "gemini",
        timeout_s: float = 300.0,
        temperature: float = 0.7,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"{name} requires GEMINI_API_KEY or a per-request gemini key")
        self.api_key = api_key
        self.model = model
        self.name = name
        self.temperature = temperature
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=10.0))

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str:
        payload: dict = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens, "temperature": self.temperature},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        log.info("gemini.generate model=%s max_tokens=%s", self.model, max_tokens)
        url = f"{GEMINI_API_BASE}{self.model}:generateContent"
        r = await send(
            self._client, "POST", url, provider=self.name, json=payload, headers={"x-goog-api-key": self.api_key}
        )
        data = r.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise InvalidOutputError("no candidates returned from Gemini", provider=self.name)
        parts = candidates[0].get("content", {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts).strip()
        if not text:
            raise InvalidOutputError("empty response from Gemini", provider=self.name)
        return text

    async def aclose(self) -> None:
        await self._client.aclose()
