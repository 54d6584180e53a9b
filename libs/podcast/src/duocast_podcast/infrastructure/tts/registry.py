from __future__ import annotations

from typing import Callable, Dict

from duocast_contracts.errors import ConfigurationError
from duocast_contracts.podcast_job import TtsOptions
from duocast_podcast.application.ports import TtsProvider
from duocast_podcast.infrastructure.config import ProviderKeys, Settings
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.tts.elevenlabs_adapter import ELEVENLABS_MODELS, ElevenLabsSynthesizer
from duocast_podcast.infrastructure.tts.gemini_adapter import GEMINI_TTS_MODELS, GeminiSynthesizer
from duocast_podcast.infrastructure.tts.google_adapter import GoogleCloudSynthesizer
from duocast_podcast.infrastructure.tts.minimax_adapter import MinimaxSynthesizer
from duocast_podcast.infrastructure.tts.piper_adapter import PiperSynthesizer

log = get_logger(__name__)

ProviderFactory = Callable[[Settings, ProviderKeys, TtsOptions], TtsProvider]

TTS_MODELS: Dict[str, tuple[str, ...]] = {
    "elevenlabs": ELEVENLABS_MODELS,
    "gemini": GEMINI_TTS_MODELS,
}


def _gemini(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> TtsProvider:
    if tuning.model:
        return GeminiSynthesizer(api_key=keys.gemini, model=tuning.model)
    return GeminiSynthesizer(api_key=keys.gemini)


def _elevenlabs(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> TtsProvider:
    return ElevenLabsSynthesizer(
        api_key=keys.elevenlabs,
        model=tuning.model or "eleven_multilingual_v2",
        speed=tuning.speed,
        stability=tuning.stability,
    )


def _google(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> TtsProvider:
    return GoogleCloudSynthesizer(api_key=keys.google or keys.gemini, speed=tuning.speed, pitch=tuning.pitch)


def _minimax(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> TtsProvider:
    return MinimaxSynthesizer(api_key=keys.minimax, model=tuning.model or "speech-2.6-hd", speed=tuning.speed, pitch=tuning.pitch)


def _piper(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> TtsProvider:
    return PiperSynthesizer(settings.piper_model_path, speed=tuning.speed)


TTS_BACKENDS: Dict[str, ProviderFactory] = {
    "gemini": _gemini,
    "elevenlabs": _elevenlabs,
    "google": _google,
    "minimax": _minimax,
    "piper": _piper,
}


def check_tts_backend(name: str, model: str | None = None) -> None:
    """Fail fast on an unknown backend or a model the backend does not offer."""
    if name not in TTS_BACKENDS:
        raise ConfigurationError(f"unknown TTS backend {name!r}; valid choices: {', '.join(TTS_BACKENDS)}")
    allowed = TTS_MODELS.get(name)
    if model and allowed and model not in allowed:
        raise ConfigurationError(f"invalid model {model!r} for {name}; valid choices: {', '.join(allowed)}")


class ProviderPool:
    """Per-job cache of TTS clients, built on first use and closed together.

    Tuning knobs apply only to the job's selected backend; providers reached
    through cross-provider voice routing use their defaults.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        keys: ProviderKeys,
        tuning: TtsOptions,
        factories: Dict[str, ProviderFactory] | None = None,
    ) -> None:
        self.settings = settings
        self.keys = keys
        self.tuning = tuning
        self.factories = factories or TTS_BACKENDS
        self._providers: Dict[str, TtsProvider] = {}

    def get(self, name: str) -> TtsProvider:
        provider = self._providers.get(name)
        if provider is not None:
            return provider
        factory = self.factories.get(name)
        if factory is None:
            raise ConfigurationError(f"unknown TTS backend {name!r}; valid choices: {', '.join(self.factories)}")
        tuning = self.tuning if name == self.tuning.backend else TtsOptions(backend=name)
        provider = factory(self.settings, self.keys, tuning)
        self._providers[name] = provider
        log.info("tts.provider.ready name=%s", name)
        return provider

    async def aclose(self) -> None:
        providers, self._providers = list(self._providers.values()), {}
        for provider in providers:
            try:
                await provider.aclose()
            except Exception as exc:  # pragma: no cover
                log.warning("tts.provider.close_failed name=%s error=%s", provider.name, exc)

    async def __aenter__(self) -> "ProviderPool":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
