from __future__ import annotations

from pathlib import Path
from typing import List, Protocol, runtime_checkable

from duocast_contracts.podcast_job import Job, JobArtifacts, JobStatus, Script, ScriptOptions, Segment
from duocast_podcast.domain.models import AudioChunk, Voice, VoiceAssignment


class Ingester(Protocol):
    async def extract(self, source: str) -> str:
        """Return plain text. Raises UnreachableError, UnsupportedError or TooShortError."""


class TextGenerator(Protocol):
    name: str

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str: ...

    async def aclose(self) -> None: ...


class ScriptGenerator(Protocol):
    async def generate(self, content: str, options: ScriptOptions, hosts: List[str]) -> Script: ...

    async def revise(self, script: Script, content: str, options: ScriptOptions, hosts: List[str], issues: List[str]) -> Script: ...


class TtsProvider(Protocol):
    name: str

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class BatchTtsProvider(Protocol):
    """Optional capability: one call renders a whole multi-speaker script."""

    async def synthesize_batch(self, segments: List[Segment], assignment: VoiceAssignment) -> AudioChunk: ...


class AudioAssembler(Protocol):
    async def concatenate(self, files: List[Path], *, silence_ms: int, out_path: Path) -> Path: ...

    async def transcode(self, chunk: AudioChunk, out_path: Path) -> Path: ...

    async def probe_duration(self, path: Path) -> str: ...


class JobStore(Protocol):
    async def create_job(self, job: Job) -> None: ...

    async def update_progress(self, job_id: str, *, status: JobStatus, progress: float, message: str) -> None: ...

    async def complete_job(self, job_id: str, artifacts: JobArtifacts) -> None: ...

    async def fail_job(self, job_id: str, reason: str) -> bool:
        """Return False when the job was already terminal."""

    async def get_job(self, job_id: str) -> Job: ...

    async def list_jobs(
        self, *, limit: int = 20, cursor: str | None = None, owner_id: str | None = None
    ) -> tuple[List[Job], str | None]: ...


class ObjectStorage(Protocol):
    async def upload(self, job_id: str, local_file: Path) -> tuple[str, str]:
        """Return (key, public_url)."""
