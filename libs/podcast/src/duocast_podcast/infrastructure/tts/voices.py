from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping

from duocast_contracts.errors import ConfigurationError
from duocast_contracts.podcast_job import HOST_SLOTS
from duocast_podcast.domain.models import LEGACY_SPEAKERS, Voice, VoiceAssignment


@dataclass(frozen=True)
class VoiceInfo:
    id: str
    name: str
    gender: str
    description: str = ""


VOICE_CATALOG: Dict[str, List[VoiceInfo]] = {
    "gemini": [
        VoiceInfo("Charon", "Charon", "male", "Informative"),
        VoiceInfo("Leda", "Leda", "female", "Youthful"),
        VoiceInfo("Fenrir", "Fenrir", "male", "Excitable"),
        VoiceInfo("Kore", "Kore", "female", "Firm"),
        VoiceInfo("Puck", "Puck", "male", "Upbeat"),
        VoiceInfo("Aoede", "Aoede", "female", "Breezy"),
        VoiceInfo("Orus", "Orus", "male", "Firm"),
        VoiceInfo("Zephyr", "Zephyr", "female", "Bright"),
    ],
    "google": [
        VoiceInfo("en-US-Chirp3-HD-Charon", "Charon", "male", "Informative, clear narrator"),
        VoiceInfo("en-US-Chirp3-HD-Leda", "Leda", "female", "Youthful, bright"),
        VoiceInfo("en-US-Chirp3-HD-Fenrir", "Fenrir", "male", "Deep, resonant"),
        VoiceInfo("en-US-Chirp3-HD-Kore", "Kore", "female", "Firm, confident"),
        VoiceInfo("en-US-Chirp3-HD-Puck", "Puck", "male", "Upbeat, energetic"),
    ],
    "elevenlabs": [
        VoiceInfo("JBFqnCBsd6RMkjVDRZzb", "George", "male", "Warm British narrator"),
        VoiceInfo("EXAVITQu4vr4xnSDxMaL", "Sarah", "female", "Soft, confident"),
        VoiceInfo("pNInz6obpgDQGcFmaJgB", "Adam", "male", "Deep, measured"),
    ],
    "minimax": [
        VoiceInfo("English_Explanatory_Man", "Marcus", "male", "Explanatory"),
        VoiceInfo("English_captivating_female1", "Nadia", "female", "Captivating"),
        VoiceInfo("English_Trustworth_Man", "Owen", "male", "Trustworthy"),
    ],
    "piper": [
        VoiceInfo("0", "Speaker0", "unknown"),
        VoiceInfo("1", "Speaker1", "unknown"),
        VoiceInfo("2", "Speaker2", "unknown"),
    ],
}

DEFAULT_VOICE_IDS: Dict[str, List[str]] = {
    "gemini": ["Charon", "Leda", "Fenrir"],
    "google": ["en-US-Chirp3-HD-Charon", "en-US-Chirp3-HD-Leda", "en-US-Chirp3-HD-Fenrir"],
    "elevenlabs": ["JBFqnCBsd6RMkjVDRZzb", "EXAVITQu4vr4xnSDxMaL", "pNInz6obpgDQGcFmaJgB"],
    "minimax": ["English_Explanatory_Man", "English_captivating_female1", "English_Trustworth_Man"],
    "piper": ["0", "1", "2"],
}

KNOWN_PROVIDERS = tuple(VOICE_CATALOG)


def available_voices(provider: str) -> List[VoiceInfo]:
    try:
        return VOICE_CATALOG[provider]
    except KeyError:
        raise ConfigurationError(
            f"unknown TTS provider {provider!r}; valid choices: {', '.join(KNOWN_PROVIDERS)}"
        ) from None


def display_name(provider: str, voice_id: str) -> str:
    for info in VOICE_CATALOG.get(provider, []):
        if info.id == voice_id:
            return info.name
    return voice_id


def parse_voice_spec(spec: str, default_provider: str) -> Voice:
    """Parse ``provider:id``; a prefix that is not a known provider belongs to the id."""
    spec = spec.strip()
    if not spec:
        raise ConfigurationError("empty voice spec")
    provider, voice_id = default_provider, spec
    if ":" in spec:
        prefix, rest = spec.split(":", 1)
        if prefix in KNOWN_PROVIDERS and rest:
            provider, voice_id = prefix, rest
    return Voice(provider=provider, id=voice_id, name=display_name(provider, voice_id))


def build_assignment(voices: Mapping[str, str], *, default_provider: str, count: int) -> VoiceAssignment:
    """Resolve host slots to voices. Speaker labels are the voices' display names."""
    if default_provider not in DEFAULT_VOICE_IDS:
        raise ConfigurationError(
            f"unknown TTS provider {default_provider!r}; valid choices: {', '.join(KNOWN_PROVIDERS)}"
        )
    defaults = DEFAULT_VOICE_IDS[default_provider]
    resolved: List[Voice] = []
    for idx, slot in enumerate(HOST_SLOTS[:count]):
        spec = voices.get(slot)
        if spec:
            resolved.append(parse_voice_spec(spec, default_provider))
        else:
            voice_id = defaults[idx]
            resolved.append(Voice(default_provider, voice_id, display_name(default_provider, voice_id)))

    labels = [v.name for v in resolved]
    if len(set(labels)) != len(labels):
        # Two hosts share a display name; fall back to the fixed persona names.
        labels = list(LEGACY_SPEAKERS)[: len(resolved)]
    return VoiceAssignment(dict(zip(labels, resolved)))
