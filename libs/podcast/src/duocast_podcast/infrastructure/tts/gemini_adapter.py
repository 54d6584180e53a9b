from __future__ import annotations

import base64
import json
import re
from typing import List

import httpx

from duocast_contracts.errors import ConfigurationError, TransientProviderError
from duocast_contracts.podcast_job import Segment
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice, VoiceAssignment
from duocast_podcast.infrastructure.http import send
from duocast_podcast.infrastructure.llm.gemini import GEMINI_API_BASE
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.retry import TTS_RETRY, RetryPolicy, retry_async

log = get_logger(__name__)

GEMINI_TTS_MODELS = ("gemini-2.5-pro-preview-tts", "gemini-2.5-flash-preview-tts")


def retry_delay_from_body(body: str) -> float | None:
    """Read ``RetryInfo.retryDelay`` (e.g. "17s") from a Google API error body."""
    try:
        details = json.loads(body).get("error", {}).get("details") or []
    except (ValueError, AttributeError):
        return None
    for detail in details:
        delay = detail.get("retryDelay") if isinstance(detail, dict) else None
        if delay:
            match = re.fullmatch(r"(\d+(?:\.\d+)?)s", str(delay))
            if match:
                return float(match.group(1))
    return None


class GeminiSynthesizer:
    """Gemini native TTS. Returns raw PCM (s16le, 24 kHz, mono).

    Supports multi-speaker batch synthesis of a whole script in one call.
    """

    name = "gemini"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gemini-2.5-pro-preview-tts",
        timeout_s: float = 600.0,
        retry: RetryPolicy = TTS_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("gemini TTS requires GEMINI_API_KEY or a per-request gemini key")
        self.api_key = api_key
        self.model = model
        self.retry = retry
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=10.0))

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        speech = {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice.id}}}
        return await retry_async(
            lambda: self._request(text, speech), policy=self.retry, label=f"tts:{self.name}"
        )

    async def synthesize_batch(self, segments: List[Segment], assignment: VoiceAssignment) -> AudioChunk:
        dialogue = "".join(f"{seg.speaker}: {seg.text}\n" for seg in segments)
        speakers: list[dict] = []
        seen: set[str] = set()
        for seg in segments:
            if seg.speaker in seen:
                continue
            seen.add(seg.speaker)
            voice = assignment.voice_for(seg.speaker)
            speakers.append(
                {"speaker": seg.speaker, "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice.id}}}
            )
        if len(speakers) == 1:
            speech: dict = {"voiceConfig": speakers[0]["voiceConfig"]}
        else:
            speech = {"multiSpeakerVoiceConfig": {"speakerVoiceConfigs": speakers}}
        log.info("gemini.tts.batch segments=%s speakers=%s chars=%s", len(segments), len(speakers), len(dialogue))
        return await retry_async(
            lambda: self._request(dialogue, speech), policy=self.retry, label=f"tts:{self.name}:batch"
        )

    async def _request(self, text: str, speech_config: dict) -> AudioChunk:
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {"responseModalities": ["AUDIO"], "speechConfig": speech_config},
        }
        url = f"{GEMINI_API_BASE}{self.model}:generateContent"
        try:
            r = await send(
                self._client, "POST", url, provider=self.name, json=payload, headers={"x-goog-api-key": self.api_key}
            )
        except TransientProviderError as exc:
            if exc.retry_after is None and exc.body:
                exc.retry_after = retry_delay_from_body(exc.body)
            raise
        candidates = r.json().get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts") if candidates else None
        inline = (parts or [{}])[0].get("inlineData") if parts else None
        if not inline or not inline.get("data"):
            # Gemini occasionally answers 200 with no audio; worth another attempt.
            raise TransientProviderError("gemini response contained no audio data", status_code=200, provider=self.name)
        return AudioChunk(data=base64.b64decode(inline["data"]), encoding=AudioEncoding.PCM)

    async def aclose(self) -> None:
        await self._client.aclose()
