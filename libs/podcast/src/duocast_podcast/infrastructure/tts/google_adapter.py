from __future__ import annotations

import base64

import httpx

from duocast_contracts.errors import ConfigurationError, TransientProviderError
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.retry import TTS_RETRY, RetryPolicy, retry_async


class GoogleCloudSynthesizer:
    """Google Cloud Text-to-Speech over REST (Chirp 3 HD voices), mp3 output."""

    name = "google"

    def __init__(
        self,
        *,
        api_key: str | None,
        speed: float | None = None,
        pitch: float | None = None,
        language_code: str = "en-US",
        timeout_s: float = 60.0,
        base_url: str = "https://texttospeech.googleapis.com/v1/text:synthesize",
        retry: RetryPolicy = TTS_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("google TTS requires GOOGLE_TTS_API_KEY or a per-request google key")
        self.api_key = api_key
        self.speed = speed
        self.pitch = pitch
        self.language_code = language_code
        self.base_url = base_url
        self.retry = retry
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    def _audio_config(self) -> dict:
        cfg: dict = {"audioEncoding": "MP3"}
        if self.speed:
            cfg["speakingRate"] = self.speed
        if self.pitch:
            cfg["pitch"] = self.pitch
        return cfg

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        return await retry_async(lambda: self._request(text, voice), policy=self.retry, label=f"tts:{self.name}")

    async def _request(self, text: str, voice: Voice) -> AudioChunk:
        payload = {
            "input": {"text": text},
            "voice": {"languageCode": self.language_code, "name": voice.id},
            "audioConfig": self._audio_config(),
        }
        r = await send(
            self._client, "POST", self.base_url, provider=self.name, json=payload, headers={"x-goog-api-key": self.api_key}
        )
        content = r.json().get("audioContent")
        if not content:
            raise TransientProviderError("google TTS response contained no audio", status_code=200, provider=self.name)
        return AudioChunk(data=base64.b64decode(content), encoding=AudioEncoding.MP3)

    async def aclose(self) -> None:
        await self._client.aclose()
