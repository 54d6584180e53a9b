from __future__ import annotations

import asyncio
import contextvars
import tempfile
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncContextManager, Callable, Dict, List

from duocast_contracts.errors import CapacityError, ClosedError, DuocastError, ShutdownError
from duocast_contracts.podcast_job import GenerationRequest, Job, JobArtifacts, JobStatus, Script, UsageCounters
from duocast_podcast.application.ports import JobStore, ObjectStorage
from duocast_podcast.application.use_cases import GeneratePodcast
from duocast_podcast.domain.models import PipelineResult, ProgressEvent, Stage
from duocast_podcast.infrastructure import metrics
from duocast_podcast.infrastructure.logging import get_logger, get_tracer, set_job_id
from duocast_podcast.infrastructure.script.script_io import save_script
from duocast_podcast.infrastructure.storage.fs_store import utcnow

log = get_logger(__name__)
tracer = get_tracer(__name__)

SHUTDOWN_REASON = "server shutdown during processing"
CANCEL_REASON = "cancelled by request"
UPLOAD_PROGRESS = 0.95

STAGE_STATUS = {
    Stage.INGEST: JobStatus.INGESTING,
    Stage.SCRIPT: JobStatus.SCRIPTING,
    Stage.TTS: JobStatus.SYNTHESIZING,
    Stage.ASSEMBLY: JobStatus.ASSEMBLING,
    Stage.COMPLETE: JobStatus.ASSEMBLING,
    Stage.UPLOAD: JobStatus.UPLOADING,
}

PipelineFactory = Callable[[GenerationRequest], AsyncContextManager[GeneratePodcast]]
CostEstimator = Callable[[UsageCounters], "float | None"]


def new_job_id(now_ms: int | None = None) -> str:
    """Millisecond timestamp in fixed-width hex plus a random suffix; sorts by creation time."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{now_ms:012x}{uuid.uuid4().hex[:16]}"


class ProgressRecorder:
    """Turns pipeline progress events into throttled job-store writes.

    A status change is written at once. Within one status at most one write
    per ``interval_s`` goes through. Percent never moves backwards.
    """

    def __init__(
        self,
        store: JobStore,
        job_id: str,
        *,
        interval_s: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.job_id = job_id
        self.interval_s = interval_s
        self.clock = clock
        self.status = JobStatus.SUBMITTED
        self.progress = 0.0
        self.writes = 0
        self._last_write: float | None = None

    async def __call__(self, event: ProgressEvent) -> None:
        status = STAGE_STATUS[event.stage]
        await self.record(status, event.percent * UPLOAD_PROGRESS, event.message)

    async def record(self, status: JobStatus, progress: float, message: str, *, force: bool = False) -> None:
        progress = min(1.0, max(self.progress, progress))
        now = self.clock()
        due = self._last_write is None or now - self._last_write >= self.interval_s
        if not (force or status is not self.status or due):
            self.progress = progress
            return
        self.status, self.progress = status, progress
        self._last_write = now
        try:
            await self.store.update_progress(self.job_id, status=status, progress=progress, message=message)
            self.writes += 1
        except DuocastError as exc:
            log.warning("job.progress.write_failed status=%s error=%s", status.value, exc)


@dataclass
class _Slot:
    task: asyncio.Task | None = None
    reason: str = SHUTDOWN_REASON


class TaskManager:
    """Owns job lifecycle: admission, one worker task per job, progress, shutdown.

    Slots are reserved under a lock before any job record exists, so active
    jobs never exceed ``max_concurrent``. Rejected submissions leave no trace.
    Workers run in a fresh ``contextvars.Context`` so nothing from the
    submitting request (log correlation, trace context) leaks into the job.
    """

    def __init__(
        self,
        *,
        store: JobStore,
        storage: ObjectStorage,
        pipeline_factory: PipelineFactory,
        max_concurrent: int = 5,
        progress_interval_s: float = 2.0,
        shutdown_fail_timeout_s: float = 5.0,
        cost_estimator: CostEstimator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.storage = storage
        self.pipeline_factory = pipeline_factory
        self.max_concurrent = max_concurrent
        self.progress_interval_s = progress_interval_s
        self.shutdown_fail_timeout_s = shutdown_fail_timeout_s
        self.cost_estimator = cost_estimator
        self.clock = clock
        self._slots: Dict[str, _Slot] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def running(self) -> int:
        return len(self._slots)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._slots

    async def submit(self, request: GenerationRequest, *, script: Script | None = None) -> str:
        """Accept a job and return its id without waiting for any pipeline work."""
        job_id = new_job_id()
        async with self._lock:
            if self._closed:
                raise ClosedError("server is shutting down")
            if len(self._slots) >= self.max_concurrent:
                metrics.job_rejected()
                log.warning("job.rejected running=%s ceiling=%s", len(self._slots), self.max_concurrent)
                raise CapacityError(self.max_concurrent)
            slot = self._slots[job_id] = _Slot()

        now = utcnow()
        job = Job(
            job_id=job_id,
            owner_id=request.owner_id,
            created_at=now,
            updated_at=now,
            request=request.redacted(),
            stage_message="queued",
        )
        try:
            await self.store.create_job(job)
        except BaseException:
            self._release(job_id)
            raise
        if self._closed:
            await self._record_failure(job_id, SHUTDOWN_REASON)
            self._release(job_id)
            raise ClosedError("server is shutting down")

        slot.task = asyncio.get_running_loop().create_task(
            self._work(job_id, request, script),
            name=f"job-{job_id}",
            context=contextvars.Context(),
        )
        metrics.set_running(len(self._slots))
        log.info(
            "job.accepted job_id=%s script=%s tts=%s running=%s",
            job_id,
            request.script.backend if script is None else "saved",
            request.tts.backend,
            len(self._slots),
        )
        return job_id

    async def cancel(self, job_id: str) -> bool:
        async with self._lock:
            slot = self._slots.get(job_id)
            if slot is None or slot.task is None or slot.task.done():
                return False
            slot.reason = CANCEL_REASON
            slot.task.cancel()
        log.info("job.cancel job_id=%s", job_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every worker and wait for each to record its failure."""
        async with self._lock:
            self._closed = True
            tasks = [s.task for s in self._slots.values() if s.task is not None]
        if not tasks:
            return
        log.info("job.shutdown cancelling=%s", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every task running now has finished."""
        tasks: List[asyncio.Task] = [s.task for s in self._slots.values() if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _release(self, job_id: str) -> bool:
        """Drop the registry entry. Safe to call more than once."""
        released = self._slots.pop(job_id, None) is not None
        if released:
            metrics.set_running(len(self._slots))
        return released

    async def _work(self, job_id: str, request: GenerationRequest, script: Script | None) -> None:
        set_job_id(job_id)
        metrics.job_started()
        started = time.monotonic()
        recorder = ProgressRecorder(self.store, job_id, interval_s=self.progress_interval_s, clock=self.clock)
        try:
            with tracer.start_as_current_span("job.run", attributes={"job.id": job_id}):
                await self._execute(job_id, request, script, recorder)
        except asyncio.CancelledError:
            slot = self._slots.get(job_id)
            reason = slot.reason if slot is not None else SHUTDOWN_REASON
            await self._force_fail(job_id, reason)
            metrics.job_failed(ShutdownError.__name__ if reason == SHUTDOWN_REASON else "cancelled")
            raise
        except Exception as exc:
            log.error("job.failed job_id=%s error=%s", job_id, exc)
            await self._record_failure(job_id, str(exc) or type(exc).__name__)
            metrics.job_failed(type(exc).__name__)
        else:
            metrics.job_succeeded()
            log.info("job.complete job_id=%s seconds=%.1f", job_id, time.monotonic() - started)
        finally:
            self._release(job_id)

    async def _execute(
        self, job_id: str, request: GenerationRequest, script: Script | None, recorder: ProgressRecorder
    ) -> None:
        with tempfile.TemporaryDirectory(prefix=f"duocast-{job_id}-") as tmp:
            workdir = Path(tmp)
            output = workdir / f"{job_id}.mp3"
            async with self.pipeline_factory(request) as pipeline:
                if script is None:
                    result = await pipeline.run(request, output, recorder)
                else:
                    result = await pipeline.run_from_script(script, request, output, recorder)

            await recorder.record(JobStatus.UPLOADING, UPLOAD_PROGRESS, "uploading", force=True)
            script_path = await asyncio.to_thread(save_script, result.script, workdir / f"{job_id}.json")
            with tracer.start_as_current_span("job.upload"):
                audio_key, audio_url = await self.storage.upload(job_id, result.output_path)
                script_key, script_url = await self.storage.upload(job_id, script_path)

        await self.store.complete_job(job_id, self._artifacts(result, audio_key, audio_url, script_key, script_url))

    def _artifacts(
        self, result: PipelineResult, audio_key: str, audio_url: str, script_key: str, script_url: str
    ) -> JobArtifacts:
        cost = self.cost_estimator(result.usage) if self.cost_estimator else None
        return JobArtifacts(
            audio_key=audio_key,
            audio_url=audio_url,
            script_key=script_key,
            script_url=script_url,
            title=result.script.title,
            summary=result.script.summary,
            duration=result.duration,
            size_bytes=result.size_bytes,
            usage=result.usage,
            estimated_cost_usd=cost,
        )

    async def _force_fail(self, job_id: str, reason: str) -> None:
        try:
            async with asyncio.timeout(self.shutdown_fail_timeout_s):
                await self.store.fail_job(job_id, reason)
            log.warning("job.cancelled job_id=%s reason=%s", job_id, reason)
        except TimeoutError:
            log.error("job.fail_timeout job_id=%s reason=%s", job_id, reason)
        except Exception as exc:
            log.error("job.fail_write_failed job_id=%s error=%s", job_id, exc)

    async def _record_failure(self, job_id: str, reason: str) -> None:
        try:
            await self.store.fail_job(job_id, reason)
        except Exception as exc:
            log.error("job.fail_write_failed job_id=%s error=%s", job_id, exc)
