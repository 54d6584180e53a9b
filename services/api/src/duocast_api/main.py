from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from duocast_contracts.errors import (
    CapacityError,
    ConfigurationError,
    JobNotFoundError,
    ClosedError,
)
from duocast_contracts.podcast_job import (
    Duration,
    GenerationRequest,
    JobPage,
    JobView,
    ShowFormat,
    SubmitResponse,
    Tone,
)
from duocast_podcast.application.task_manager import TaskManager
from duocast_podcast.infrastructure import metrics
from duocast_podcast.infrastructure.config import Settings, load_env
from duocast_podcast.infrastructure.logging import get_logger, maybe_init_tracing, setup_logging
from duocast_podcast.infrastructure.runtime import build_task_manager, validate_request
from duocast_podcast.infrastructure.script.backends import SCRIPT_BACKENDS
from duocast_podcast.infrastructure.tts.registry import TTS_BACKENDS, TTS_MODELS
from duocast_podcast.infrastructure.tts.voices import VOICE_CATALOG

log = get_logger("duocast_api")


def _require_api_key(request: Request) -> None:
    expected = request.app.state.settings.api_key
    if not expected:
        return
    header = request.headers.get("x-api-key") or request.headers.get("authorization")
    token = header.replace("Bearer ", "").strip() if header else None
    if not token:
        raise HTTPException(status_code=401, detail="Missing API key")
    if token != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_manager(request: Request) -> TaskManager:
    return request.app.state.manager


def _options_payload() -> dict[str, Any]:
    return {
        "script_backends": list(SCRIPT_BACKENDS),
        "tts_backends": list(TTS_BACKENDS),
        "tts_models": {name: list(models) for name, models in TTS_MODELS.items()},
        "formats": [f.value for f in ShowFormat],
        "tones": [t.value for t in Tone],
        "durations": [d.value for d in Duration],
        "voices": {
            provider: [{"id": v.id, "name": v.name, "gender": v.gender} for v in voices]
            for provider, voices in VOICE_CATALOG.items()
        },
    }


def create_app(settings: Settings | None = None, *, manager: TaskManager | None = None) -> FastAPI:
    """Build the API. A pre-built manager skips store and pipeline wiring."""
    if settings is None:
        load_env()
        settings = Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, fmt=settings.log_format)
        maybe_init_tracing("duocast-api", settings.otel_endpoint)
        if settings.metrics_enabled:
            metrics.maybe_start_server(settings.metrics_port)
        settings.media_dir.mkdir(parents=True, exist_ok=True)
        app.state.manager = manager or build_task_manager(settings)
        log.info("api.started ceiling=%s store=%s", settings.max_concurrent_jobs, settings.job_store)
        try:
            yield
        finally:
            await app.state.manager.shutdown()
            log.info("api.stopped")

    app = FastAPI(title="Duocast API", lifespan=lifespan)
    app.state.settings = settings
    app.mount("/media", StaticFiles(directory=settings.media_dir, check_dir=False), name="media")

    @app.exception_handler(JobNotFoundError)
    async def _not_found(request: Request, exc: JobNotFoundError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/v1/options", dependencies=[Depends(_require_api_key)])
    def options() -> dict:
        return _options_payload()

    @app.post("/v1/podcasts", status_code=202, response_model=SubmitResponse, dependencies=[Depends(_require_api_key)])
    async def submit_podcast(body: GenerationRequest, manager: TaskManager = Depends(get_manager)) -> SubmitResponse:
        try:
            validate_request(body)
        except ConfigurationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        try:
            job_id = await manager.submit(body)
        except CapacityError as exc:
            raise HTTPException(status_code=429, detail=str(exc), headers={"Retry-After": "30"}) from exc
        except ClosedError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return SubmitResponse(job_id=job_id)

    @app.get("/v1/podcasts/{job_id}", response_model=JobView, dependencies=[Depends(_require_api_key)])
    async def get_podcast(job_id: str, manager: TaskManager = Depends(get_manager)) -> JobView:
        return JobView.from_job(await manager.store.get_job(job_id))

    @app.get("/v1/podcasts", response_model=JobPage, dependencies=[Depends(_require_api_key)])
    async def list_podcasts(
        limit: int = Query(20, ge=1, le=100),
        cursor: str | None = None,
        owner_id: str | None = None,
        manager: TaskManager = Depends(get_manager),
    ) -> JobPage:
        jobs, next_cursor = await manager.store.list_jobs(limit=limit, cursor=cursor, owner_id=owner_id)
        return JobPage(items=[JobView.from_job(j) for j in jobs], next_cursor=next_cursor)

    @app.post("/v1/podcasts/{job_id}/cancel", dependencies=[Depends(_require_api_key)])
    async def cancel_podcast(job_id: str, manager: TaskManager = Depends(get_manager)) -> dict:
        job = await manager.store.get_job(job_id)
        if job.status.terminal:
            raise HTTPException(status_code=409, detail=f"job is already {job.status.value}")
        cancelled = await manager.cancel(job_id)
        return {"job_id": job_id, "cancelled": cancelled}

    return app


app = create_app()
