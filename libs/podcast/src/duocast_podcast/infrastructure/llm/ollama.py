from __future__ import annotations

import httpx

from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)


class OllamaTextGenerator:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_s: float = 600.0,
        temperature: float | None = 0.6,
        top_p: float | None = 0.9,
        options: dict | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.name = "ollama"
        default_opts = {
            "temperature": temperature,
            "top_p": top_p,
            "repeat_penalty": 1.1,
        }
        # Drop None values so server defaults stay in effect.
        self.options = {k: v for k, v in default_opts.items() if v is not None}
        if options:
            self.options.update(options)
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, read=timeout_s))

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str:
        payload: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {**self.options, "num_predict": max_tokens},
        }
        if system:
            payload["system"] = system
        log.info("ollama.generate model=%s", self.model)
        r = await send(self._client, "POST", f"{self.base_url}/api/generate", provider=self.name, json=payload)
        return str(r.json().get("response", "")).strip()

    async def aclose(self) -> None:
        await self._client.aclose()
