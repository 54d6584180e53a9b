from __future__ import annotations

import asyncio
import os
import tempfile
import time
from pathlib import Path
from typing import Awaitable, Dict, List, TypeVar

from duocast_contracts.errors import PipelineError
from duocast_contracts.podcast_job import GenerationRequest, Script, UsageCounters
from duocast_podcast.application.ports import AudioAssembler, Ingester, ScriptGenerator
from duocast_podcast.application.review import ScriptReviewer
from duocast_podcast.application.synthesis import SpeechSynthesizer
from duocast_podcast.domain.models import (
    LEGACY_SPEAKERS,
    PipelineResult,
    ProgressCallback,
    ProgressEvent,
    Stage,
    Voice,
    VoiceAssignment,
)
from duocast_podcast.infrastructure import metrics
from duocast_podcast.infrastructure.ingest.ingesters import SourceIngester, TextIngester
from duocast_podcast.infrastructure.logging import get_logger, get_tracer
from duocast_podcast.infrastructure.tts.voices import build_assignment

log = get_logger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")

TTS_START = 0.20
TTS_SPAN = 0.70
TTS_END = TTS_START + TTS_SPAN


async def _ignore(event: ProgressEvent) -> None:
    return None


def _partial_path(output_path: Path) -> Path:
    return output_path.with_name(f".{output_path.stem}.partial{output_path.suffix}")


class GeneratePodcast:
    """Orchestrates one episode: ingest, script, review, synthesize, assemble.

    Business flow lives here, not inside FastAPI or task glue. The orchestrator
    never retries; adapters own their retry budgets. Every phase failure is
    re-raised as ``PipelineError(stage, cause)``. Cancellation passes through
    untouched so the caller can tell a shutdown from a failure.
    """

    def __init__(
        self,
        *,
        script_generator: ScriptGenerator,
        synthesizer: SpeechSynthesizer,
        assembler: AudioAssembler,
        ingester: Ingester | None = None,
        text_ingester: Ingester | None = None,
        silence_ms: int = 200,
        refine: bool = True,
    ) -> None:
        self.script_generator = script_generator
        self.synthesizer = synthesizer
        self.assembler = assembler
        self.ingester = ingester or SourceIngester()
        self.text_ingester = text_ingester or TextIngester()
        self.silence_ms = silence_ms
        self.refine = refine

    async def run(
        self, request: GenerationRequest, output_path: Path, on_progress: ProgressCallback | None = None
    ) -> PipelineResult:
        run = _Run(on_progress)
        assignment = build_assignment(
            request.voices, default_provider=request.tts.backend, count=request.script.speakers
        )
        hosts = assignment.speakers

        await run.emit(Stage.INGEST, "reading source", 0.0)
        if request.input_url:
            content = await run.phase(Stage.INGEST, self.ingester.extract(request.input_url))
        else:
            content = await run.phase(Stage.INGEST, self.text_ingester.extract(request.input_text or ""))
        await run.emit(Stage.INGEST, f"read {len(content.split())} words", 0.05)
        await asyncio.sleep(0)

        await run.emit(Stage.SCRIPT, f"writing script with {request.script.backend}", 0.05)
        script = await run.phase(Stage.SCRIPT, self.script_generator.generate(content, request.script, hosts))
        await run.emit(Stage.SCRIPT, f"script ready: {len(script.segments)} segments", 0.18)
        await asyncio.sleep(0)

        if self.refine and request.script.refine:
            outcome = await run.phase(
                Stage.SCRIPT, ScriptReviewer(self.script_generator).refine(script, content, request.script, hosts)
            )
            script = outcome.script
            note = "revised" if outcome.revised else "passed"
            await run.emit(Stage.SCRIPT, f"review {note} ({len(outcome.issues)} issues)", TTS_START)
            await asyncio.sleep(0)

        usage = UsageCounters(input_chars=len(content), script_backend=request.script.backend)
        return await self._render(run, script, request, assignment, Path(output_path), usage, request.input_url)

    async def run_from_script(
        self,
        script: Script,
        request: GenerationRequest,
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        """Skip ingest and scripting; render a previously saved script.

        The script keeps its own speaker labels, so a script written for one
        backend can be re-rendered with another.
        """
        run = _Run(on_progress)
        speakers = script.speakers()
        try:
            script.ensure_valid(speakers)
        except Exception as exc:
            raise PipelineError(Stage.SCRIPT.value, exc) from exc
        count = min(3, len(speakers))
        slots = build_assignment(request.voices, default_provider=request.tts.backend, count=count)
        assignment = assignment_for_speakers(slots, speakers)
        usage = UsageCounters(script_backend="saved")
        return await self._render(run, script, request, assignment, Path(output_path), usage, None)

    async def _render(
        self,
        run: "_Run",
        script: Script,
        request: GenerationRequest,
        assignment: VoiceAssignment,
        output_path: Path,
        usage: UsageCounters,
        source_title: str | None,
    ) -> PipelineResult:
        total = len(script.segments)
        partial = _partial_path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tempfile.TemporaryDirectory(prefix="duocast-") as scratch:
                workdir = Path(scratch)
                await run.emit(Stage.TTS, f"synthesizing {total} segments with {request.tts.backend}", TTS_START, 0, total)

                async def on_segment(done: int, of: int) -> None:
                    await run.emit(Stage.TTS, f"segment {done}/{of}", TTS_START + TTS_SPAN * done / of, done, of)

                files: List[Path] = await run.phase(
                    Stage.TTS, self.synthesizer.synthesize(script, assignment, workdir, on_segment)
                )
                await run.emit(Stage.TTS, "speech rendered", TTS_END, total, total)
                await asyncio.sleep(0)

                await run.emit(Stage.ASSEMBLY, f"assembling {len(files)} audio files", TTS_END)
                await run.phase(
                    Stage.ASSEMBLY,
                    self.assembler.concatenate(files, silence_ms=self.silence_ms, out_path=partial),
                )
                duration = await run.phase(Stage.ASSEMBLY, self.assembler.probe_duration(partial))
            os.replace(partial, output_path)
        finally:
            partial.unlink(missing_ok=True)

        size = output_path.stat().st_size
        usage = usage.model_copy(
            update={"tts_backend": request.tts.backend, "tts_chars": script.char_count, "segments": total}
        )
        await run.emit(Stage.COMPLETE, f"done: {duration}", 1.0)
        log.info("pipeline.complete segments=%s duration=%s bytes=%s", total, duration, size)
        return PipelineResult(
            output_path=output_path,
            script=script,
            duration=duration,
            size_bytes=size,
            usage=usage,
            timings=dict(run.timings),
            source_title=source_title or script.title or None,
        )


class _Run:
    """Per-run progress and timing bookkeeping."""

    def __init__(self, on_progress: ProgressCallback | None) -> None:
        self.on_progress = on_progress or _ignore
        self.started = time.monotonic()
        self.timings: Dict[str, float] = {}

    async def emit(self, stage: Stage, message: str, percent: float, segment: int = 0, total: int = 0) -> None:
        event = ProgressEvent(
            stage=stage,
            message=message,
            percent=round(min(1.0, max(0.0, percent)), 4),
            segment=segment,
            total=total,
            elapsed_s=time.monotonic() - self.started,
        )
        await self.on_progress(event)

    async def phase(self, stage: Stage, work: Awaitable[T]) -> T:
        t0 = time.monotonic()
        with tracer.start_as_current_span(f"pipeline.{stage.value}"):
            try:
                return await work
            except PipelineError:
                raise
            except Exception as exc:
                log.error("pipeline.failed stage=%s error=%s", stage.value, exc)
                raise PipelineError(stage.value, exc) from exc
            finally:
                elapsed = time.monotonic() - t0
                self.timings[stage.value] = self.timings.get(stage.value, 0.0) + elapsed
                metrics.observe_stage(stage.value, elapsed)


def assignment_for_speakers(slots: VoiceAssignment, speakers: List[str]) -> VoiceAssignment:
    """Key host-slot voices by a saved script's own labels.

    Labels naming a slot voice or a legacy persona keep that voice; the rest
    take the unused slot voices in order of first appearance. Speakers past
    the third fall back through ``VoiceAssignment.voice_for``.
    """
    labels = speakers[:3]
    mapping: Dict[str, Voice] = {}
    for label in labels:
        if label in slots.voices:
            mapping[label] = slots.voices[label]
        elif label in LEGACY_SPEAKERS:
            mapping[label] = slots.voice_for(label)
    free = [v for v in slots.voices.values() if v not in mapping.values()]
    for label in labels:
        if label not in mapping:
            mapping[label] = free.pop(0) if free else next(iter(slots.voices.values()))
    return VoiceAssignment({label: mapping[label] for label in labels})
