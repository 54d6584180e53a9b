from __future__ import annotations

import httpx

from duocast_contracts.errors import ConfigurationError, TransientProviderError
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.retry import TTS_RETRY, RetryPolicy, retry_async

log = get_logger(__name__)

ELEVENLABS_MODELS = ("eleven_v3", "eleven_multilingual_v2", "eleven_turbo_v2_5", "eleven_flash_v2_5")


class ElevenLabsSynthesizer:
    """ElevenLabs text-to-speech, mp3 per call."""

    name = "elevenlabs"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "eleven_multilingual_v2",
        speed: float | None = None,
        stability: float | None = None,
        output_format: str = "mp3_44100_128",
        timeout_s: float = 60.0,
        base_url: str = "https://api.elevenlabs.io/v1/text-to-speech",
        retry: RetryPolicy = TTS_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("elevenlabs requires ELEVENLABS_API_KEY or a per-request elevenlabs key")
        self.api_key = api_key
        self.model = model
        # ElevenLabs clamps speed to 0.7-1.2.
        self.speed = max(0.7, min(1.2, speed)) if speed is not None else 1.0
        self.stability = stability if stability is not None else 0.5
        self.output_format = output_format
        self.base_url = base_url
        self.retry = retry
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        return await retry_async(lambda: self._request(text, voice), policy=self.retry, label=f"tts:{self.name}")

    async def _request(self, text: str, voice: Voice) -> AudioChunk:
        payload = {
            "text": text,
            "model_id": self.model,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": 0.75,
                "style": 0.0,
                "use_speaker_boost": True,
                "speed": self.speed,
            },
        }
        headers = {"xi-api-key": self.api_key, "Content-Type": "application/json"}
        r = await send(
            self._client,
            "POST",
            f"{self.base_url}/{voice.id}",
            provider=self.name,
            params={"output_format": self.output_format},
            json=payload,
            headers=headers,
        )
        if not r.content:
            raise TransientProviderError("elevenlabs returned an empty body", status_code=r.status_code, provider=self.name)
        return AudioChunk(data=r.content, encoding=AudioEncoding.MP3)

    async def aclose(self) -> None:
        await self._client.aclose()
