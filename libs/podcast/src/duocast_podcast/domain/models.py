from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from duocast_contracts.podcast_job import Script, UsageCounters

# Speaker labels used by scripts written before voices carried display names.
LEGACY_SPEAKERS = {"Alex": "host1", "Sam": "host2", "Jordan": "host3"}


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str
    source: str | None = None


@dataclass(frozen=True)
class Voice:
    provider: str
    id: str
    name: str

    def __str__(self) -> str:
        return f"{self.provider}:{self.id}"


@dataclass(frozen=True)
class VoiceAssignment:
    """Speaker label -> Voice, in host-slot order."""

    voices: Dict[str, Voice]

    def __post_init__(self) -> None:
        if not 1 <= len(self.voices) <= 3:
            raise ValueError("a voice assignment holds 1 to 3 voices")

    @property
    def speakers(self) -> List[str]:
        return list(self.voices)

    @property
    def providers(self) -> set[str]:
        return {v.provider for v in self.voices.values()}

    def voice_for(self, speaker: str) -> Voice:
        voice = self.voices.get(speaker)
        if voice is not None:
            return voice
        slot = LEGACY_SPEAKERS.get(speaker, "host1")
        index = int(slot[-1]) - 1
        ordered = list(self.voices.values())
        return ordered[index] if index < len(ordered) else ordered[0]


class AudioEncoding(str, Enum):
    MP3 = "mp3"
    WAV = "wav"
    PCM = "pcm"  # s16le, 24 kHz, mono

    @property
    def needs_transcode(self) -> bool:
        return self is not AudioEncoding.MP3


@dataclass(frozen=True)
class AudioChunk:
    data: bytes
    encoding: AudioEncoding
    sample_rate: int = 24000
    channels: int = 1


class Stage(str, Enum):
    INGEST = "ingest"
    SCRIPT = "script"
    TTS = "tts"
    ASSEMBLY = "assembly"
    UPLOAD = "upload"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    message: str
    percent: float
    segment: int = 0
    total: int = 0
    elapsed_s: float = 0.0


ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]


@dataclass(frozen=True)
class PipelineResult:
    output_path: Path
    script: Script
    duration: str
    size_bytes: int
    usage: UsageCounters = field(default_factory=UsageCounters)
    timings: Dict[str, float] = field(default_factory=dict)
    source_title: Optional[str] = None
