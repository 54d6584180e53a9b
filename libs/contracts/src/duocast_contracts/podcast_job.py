from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from duocast_contracts.errors import InvalidOutputError

HOST_SLOTS = ("host1", "host2", "host3")
BYOK_PROVIDERS = ("anthropic", "gemini", "elevenlabs", "openrouter", "minimax", "google")


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    INGESTING = "ingesting"
    SCRIPTING = "scripting"
    SYNTHESIZING = "synthesizing"
    ASSEMBLING = "assembling"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)

    def can_advance_to(self, other: "JobStatus") -> bool:
        """Forward-only moves. Phases may be skipped (a job started from a saved script)."""
        if self.terminal:
            return False
        if other is JobStatus.FAILED:
            return True
        return _STATUS_ORDER.index(other) >= _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    JobStatus.SUBMITTED,
    JobStatus.INGESTING,
    JobStatus.SCRIPTING,
    JobStatus.SYNTHESIZING,
    JobStatus.ASSEMBLING,
    JobStatus.UPLOADING,
    JobStatus.COMPLETE,
]


class Tone(str, Enum):
    CASUAL = "casual"
    TECHNICAL = "technical"
    EDUCATIONAL = "educational"


class ShowFormat(str, Enum):
    CONVERSATION = "conversation"
    INTERVIEW = "interview"
    DEEP_DIVE = "deep-dive"
    EXPLAINER = "explainer"
    DEBATE = "debate"
    NEWS = "news"
    STORYTELLING = "storytelling"
    CHALLENGER = "challenger"


class Duration(str, Enum):
    SHORT = "short"
    STANDARD = "standard"
    LONG = "long"
    DEEP = "deep"

    @property
    def target_segments(self) -> int:
        return {"short": 20, "standard": 40, "long": 80, "deep": 160}[self.value]

    @property
    def max_tokens(self) -> int:
        return {"long": 24576, "deep": 32768}.get(self.value, 8192)


class Segment(BaseModel):
    speaker: str
    text: str


class Script(BaseModel):
    title: str = ""
    summary: str = ""
    segments: list[Segment] = Field(default_factory=list)

    def speakers(self) -> list[str]:
        seen: list[str] = []
        for seg in self.segments:
            if seg.speaker not in seen:
                seen.append(seg.speaker)
        return seen

    def ensure_valid(self, hosts: list[str]) -> None:
        """Raise InvalidOutputError unless the script is usable with the given host set."""
        if not self.segments:
            raise InvalidOutputError("script has no segments")
        allowed = set(hosts)
        for idx, seg in enumerate(self.segments, start=1):
            if seg.speaker not in allowed:
                raise InvalidOutputError(
                    f"segment {idx} has unknown speaker {seg.speaker!r} (expected one of {', '.join(hosts)})"
                )
            if not seg.text.strip():
                raise InvalidOutputError(f"segment {idx} has blank text")

    @property
    def char_count(self) -> int:
        return sum(len(s.text) for s in self.segments)


class ScriptOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: str = Field(default="haiku", description="Script-generation backend name.")
    tone: Tone = Tone.CASUAL
    duration: Duration = Duration.STANDARD
    format: ShowFormat = ShowFormat.CONVERSATION
    topic: str | None = Field(default=None, description="Optional focus topic.")
    styles: tuple[str, ...] = Field(default_factory=tuple)
    speakers: int = Field(default=2, ge=1, le=3)
    refine: bool = True


class TtsOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: str = Field(default="gemini", description="TTS backend name.")
    model: str | None = None
    speed: float | None = Field(default=None, ge=0.25, le=4.0)
    stability: float | None = Field(default=None, ge=0.0, le=1.0)
    pitch: float | None = Field(default=None, ge=-20.0, le=20.0)


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_text: str | None = None
    input_url: str | None = None
    script: ScriptOptions = Field(default_factory=ScriptOptions)
    tts: TtsOptions = Field(default_factory=TtsOptions)
    voices: dict[str, str] = Field(default_factory=dict, description="host slot -> voice spec")
    owner_id: str | None = None
    api_keys: dict[str, str] = Field(default_factory=dict, description="Per-request credential overrides.")

    @field_validator("voices")
    @classmethod
    def _known_slots(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = sorted(set(value) - set(HOST_SLOTS))
        if unknown:
            raise ValueError(f"unknown host slot(s): {', '.join(unknown)}")
        return value

    @field_validator("api_keys")
    @classmethod
    def _known_key_providers(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = sorted(set(value) - set(BYOK_PROVIDERS))
        if unknown:
            raise ValueError(f"unsupported api key provider(s): {', '.join(unknown)}")
        return {k: v for k, v in value.items() if v}

    @model_validator(mode="after")
    def _one_input(self) -> "GenerationRequest":
        has_text = bool(self.input_text and self.input_text.strip())
        has_url = bool(self.input_url and self.input_url.strip())
        if has_text == has_url:
            raise ValueError("provide exactly one of input_text or input_url")
        return self

    def redacted(self) -> "GenerationRequest":
        """Copy without credentials, safe to persist."""
        return self.model_copy(update={"api_keys": {}})


class UsageCounters(BaseModel):
    input_chars: int = 0
    script_backend: str = ""
    tts_backend: str = ""
    tts_chars: int = 0
    segments: int = 0


class JobArtifacts(BaseModel):
    audio_key: str
    audio_url: str
    script_key: str | None = None
    script_url: str | None = None
    title: str = ""
    summary: str = ""
    duration: str = ""
    size_bytes: int = 0
    usage: UsageCounters = Field(default_factory=UsageCounters)
    estimated_cost_usd: float | None = None


class Job(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.SUBMITTED
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    stage_message: str = ""
    owner_id: str | None = None
    created_at: datetime
    updated_at: datetime
    request: GenerationRequest | None = None
    artifacts: JobArtifacts | None = None
    error: str | None = None


class SubmitResponse(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.SUBMITTED


class JobView(BaseModel):
    job_id: str
    status: JobStatus
    progress_percent: int
    stage_message: str = ""
    created_at: datetime | None = None
    title: str | None = None
    duration: str | None = None
    audio_url: str | None = None
    script_url: str | None = None
    error: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        arts = job.artifacts
        return cls(
            job_id=job.job_id,
            status=job.status,
            progress_percent=int(round(job.progress * 100)),
            stage_message=job.stage_message,
            created_at=job.created_at,
            title=arts.title if arts else None,
            duration=arts.duration if arts else None,
            audio_url=arts.audio_url if arts else None,
            script_url=arts.script_url if arts else None,
            error=job.error,
        )


class JobPage(BaseModel):
    items: list[JobView] = Field(default_factory=list)
    next_cursor: str | None = None
