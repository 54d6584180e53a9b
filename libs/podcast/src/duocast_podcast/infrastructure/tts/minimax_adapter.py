from __future__ import annotations

import asyncio

import httpx

from duocast_contracts.errors import ConfigurationError, FatalRequestError, TransientProviderError
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.retry import TTS_RETRY, RetryPolicy, retry_async

log = get_logger(__name__)


class MinimaxSynthesizer:
    """
    Cloud TTS using Minimax Speech async API.

    Endpoints:
    - POST https://api.minimax.io/v1/t2a_async_v2
    - GET  https://api.minimax.io/v1/query/t2a_async_query_v2?task_id=...
    - GET  https://api.minimax.io/v1/files/retrieve_content?file_id=...
    """

    name = "minimax"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "speech-2.6-hd",
        speed: float | None = None,
        pitch: float | None = None,
        timeout_s: float = 30.0,
        poll_interval_s: float = 2.0,
        max_polls: int = 60,
        base_url: str = "https://api.minimax.io/v1",
        retry: RetryPolicy = TTS_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("minimax requires MINIMAX_API_KEY or a per-request minimax key")
        self.api_key = api_key
        self.model = model
        # Minimax accepts 0.5-2.0.
        self.speed = max(0.5, min(2.0, speed)) if speed is not None else 1.0
        self.pitch = int(pitch or 0)
        self.poll_interval_s = poll_interval_s
        self.max_polls = max_polls
        self.base_url = base_url.rstrip("/")
        self.retry = retry
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        log.info("minimax.tts voice=%s chars=%s", voice.id, len(text))
        return await retry_async(lambda: self._render(text, voice), policy=self.retry, label=f"tts:{self.name}")

    async def _render(self, text: str, voice: Voice) -> AudioChunk:
        file_id = await self._submit_and_poll(text, voice.id)
        r = await send(
            self._client,
            "GET",
            f"{self.base_url}/files/retrieve_content",
            provider=self.name,
            params={"file_id": file_id},
            headers=self._headers,
        )
        return AudioChunk(data=r.content, encoding=AudioEncoding.MP3)

    async def _submit_and_poll(self, text: str, voice_id: str) -> str:
        payload = {
            "model": self.model,
            "text": text,
            "voice_setting": {"voice_id": voice_id, "speed": self.speed, "vol": 1.0, "pitch": self.pitch},
            "audio_setting": {"sample_rate": 32000, "bitrate": 128000, "format": "mp3"},
        }
        r = await send(
            self._client, "POST", f"{self.base_url}/t2a_async_v2", provider=self.name, json=payload, headers=self._headers
        )
        task_id = r.json().get("task_id")
        if not task_id:
            raise TransientProviderError("no task_id returned from Minimax", status_code=r.status_code, provider=self.name)

        for _ in range(self.max_polls):
            qr = await send(
                self._client,
                "GET",
                f"{self.base_url}/query/t2a_async_query_v2",
                provider=self.name,
                params={"task_id": task_id},
                headers=self._headers,
            )
            data = qr.json()
            status = data.get("status")
            if status == "Success":
                file_id = data.get("file_id")
                if not file_id:
                    raise TransientProviderError("no file_id returned after success", provider=self.name)
                return str(file_id)
            if status == "Failed":
                raise FatalRequestError(f"Minimax task failed: {data.get('error')}", provider=self.name)
            await asyncio.sleep(self.poll_interval_s)
        raise TransientProviderError("Minimax TTS polling timed out", provider=self.name)

    async def aclose(self) -> None:
        await self._client.aclose()
