from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from duocast_contracts.errors import ConfigurationError
from duocast_contracts.podcast_job import GenerationRequest
from duocast_podcast.application.ports import JobStore, ObjectStorage
from duocast_podcast.application.synthesis import SpeechSynthesizer
from duocast_podcast.application.task_manager import CostEstimator, PipelineFactory, TaskManager
from duocast_podcast.application.use_cases import GeneratePodcast
from duocast_podcast.infrastructure.audio.pydub_assembler import PydubAudioAssembler
from duocast_podcast.infrastructure.config import Settings
from duocast_podcast.infrastructure.ingest.ingesters import SourceIngester
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.script.backends import build_script_generator, check_script_backend
from duocast_podcast.infrastructure.storage.fs_store import FileSystemJobStore, FileSystemObjectStorage
from duocast_podcast.infrastructure.tts.registry import ProviderPool, check_tts_backend

log = get_logger(__name__)


def validate_request(request: GenerationRequest) -> None:
    """Reject unknown backend or model names before a job is accepted."""
    check_script_backend(request.script.backend)
    check_tts_backend(request.tts.backend, request.tts.model)


def build_job_store(settings: Settings) -> JobStore:
    if settings.job_store == "fs":
        return FileSystemJobStore(settings.jobs_dir)
    if settings.job_store == "redis":
        from duocast_podcast.infrastructure.storage.redis_store import RedisJobStore

        return RedisJobStore(settings.redis_url)
    raise ConfigurationError(f"unknown job store {settings.job_store!r}; valid choices: fs, redis")


def build_object_storage(settings: Settings) -> ObjectStorage:
    return FileSystemObjectStorage(settings.media_dir, base_url=settings.media_base_url)


def pipeline_factory(settings: Settings) -> PipelineFactory:
    """Per-job wiring: BYOK keys applied, clients closed on every exit path."""
    assembler = PydubAudioAssembler()

    @asynccontextmanager
    async def open_pipeline(request: GenerationRequest) -> AsyncIterator[GeneratePodcast]:
        validate_request(request)
        keys = settings.keys.merged(request.api_keys)
        async with AsyncExitStack() as stack:
            generator = build_script_generator(request.script.backend, settings, keys)
            stack.push_async_callback(generator.aclose)
            ingester = SourceIngester()
            stack.push_async_callback(ingester.aclose)
            pool = ProviderPool(settings, keys=keys, tuning=request.tts)
            stack.push_async_callback(pool.aclose)
            synthesizer = SpeechSynthesizer(
                pool,
                assembler,
                selected=request.tts.backend,
                disable_batch=settings.disable_batch,
                concurrency=settings.tts_concurrency,
            )
            yield GeneratePodcast(
                script_generator=generator,
                synthesizer=synthesizer,
                assembler=assembler,
                ingester=ingester,
                silence_ms=settings.segment_silence_ms,
                refine=settings.refine_scripts,
            )

    return open_pipeline


def build_task_manager(
    settings: Settings,
    *,
    store: JobStore | None = None,
    storage: ObjectStorage | None = None,
    cost_estimator: CostEstimator | None = None,
) -> TaskManager:
    manager = TaskManager(
        store=store or build_job_store(settings),
        storage=storage or build_object_storage(settings),
        pipeline_factory=pipeline_factory(settings),
        max_concurrent=settings.max_concurrent_jobs,
        progress_interval_s=settings.progress_interval_s,
        shutdown_fail_timeout_s=settings.shutdown_fail_timeout_s,
        cost_estimator=cost_estimator,
    )
    log.info(
        "runtime.ready store=%s ceiling=%s batch=%s", settings.job_store, settings.max_concurrent_jobs, not settings.disable_batch
    )
    return manager
