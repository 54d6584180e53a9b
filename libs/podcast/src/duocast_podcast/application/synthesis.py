from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Protocol

from duocast_contracts.podcast_job import Script
from duocast_podcast.application.ports import AudioAssembler, BatchTtsProvider, TtsProvider
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, VoiceAssignment
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)

SegmentProgress = Callable[[int, int], Awaitable[None]]


class ProviderSource(Protocol):
    def get(self, name: str) -> TtsProvider: ...


def use_batch(provider: TtsProvider, selected: str, assignment: VoiceAssignment, *, disable_batch: bool = False) -> bool:
    """Batch only when the provider can do it and owns every host's voice."""
    if disable_batch or not isinstance(provider, BatchTtsProvider):
        return False
    return assignment.providers == {selected}


class SpeechSynthesizer:
    """Renders a script to ordered audio files, one per segment or one for the whole script."""

    def __init__(
        self,
        providers: ProviderSource,
        assembler: AudioAssembler,
        *,
        selected: str,
        disable_batch: bool = False,
        concurrency: int = 1,
    ) -> None:
        self.providers = providers
        self.assembler = assembler
        self.selected = selected
        self.disable_batch = disable_batch
        self.concurrency = max(1, concurrency)

    async def synthesize(
        self, script: Script, assignment: VoiceAssignment, workdir: Path, on_segment: SegmentProgress
    ) -> List[Path]:
        primary = self.providers.get(self.selected)
        total = len(script.segments)
        if use_batch(primary, self.selected, assignment, disable_batch=self.disable_batch):
            log.info("tts.batch provider=%s segments=%s", self.selected, total)
            chunk = await primary.synthesize_batch(script.segments, assignment)  # type: ignore[attr-defined]
            path = await self._store(chunk, workdir / "batch")
            await on_segment(total, total)
            return [path]

        log.info("tts.per_segment providers=%s segments=%s concurrency=%s", sorted(assignment.providers), total, self.concurrency)
        results: List[Path | None] = [None] * total
        done = 0
        gate = asyncio.Semaphore(self.concurrency)

        async def render(idx: int) -> None:
            nonlocal done
            seg = script.segments[idx]
            voice = assignment.voice_for(seg.speaker)
            async with gate:
                chunk = await self.providers.get(voice.provider).synthesize(seg.text, voice)
                results[idx] = await self._store(chunk, workdir / f"segment_{idx:04d}")
            done += 1
            await on_segment(done, total)

        if self.concurrency == 1:
            for idx in range(total):
                await render(idx)
        else:
            try:
                async with asyncio.TaskGroup() as group:
                    for idx in range(total):
                        group.create_task(render(idx))
            except ExceptionGroup as eg:
                # Surface the first real failure; siblings were cancelled with it.
                raise eg.exceptions[0] from None
        return [p for p in results if p is not None]

    async def _store(self, chunk: AudioChunk, stem: Path) -> Path:
        if chunk.encoding is AudioEncoding.MP3:
            path = stem.with_suffix(".mp3")
            path.write_bytes(chunk.data)
            return path
        return await self.assembler.transcode(chunk, stem.with_suffix(".mp3"))
