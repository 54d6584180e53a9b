from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)

_JOB_STARTED = Counter("duocast_job_started_total", "Jobs started")
_JOB_SUCCEEDED = Counter("duocast_job_succeeded_total", "Jobs completed")
_JOB_FAILED = Counter("duocast_job_failed_total", "Jobs failed", ["reason"])
_JOB_REJECTED = Counter("duocast_job_rejected_total", "Submissions rejected at capacity")
_PROVIDER_RETRIES = Counter("duocast_provider_retries_total", "Provider calls retried", ["label"])
_STAGE_SEC = Histogram(
    "duocast_stage_seconds",
    "Pipeline stage durations in seconds",
    ["stage"],
    buckets=(0.5, 1, 2, 4, 8, 16, 32, 60, 120, 300, 600, 1200),
)
_RUNNING = Gauge("duocast_jobs_running", "Jobs currently running")

_server_started = False


def maybe_start_server(port: int) -> None:
    global _server_started
    if _server_started:
        return
    try:
        start_http_server(port)
        _server_started = True
    except OSError as exc:
        log.warning("metrics.server_failed port=%s error=%s", port, exc)


def job_started() -> None:
    _JOB_STARTED.inc()


def job_succeeded() -> None:
    _JOB_SUCCEEDED.inc()


def job_failed(reason: str = "error") -> None:
    _JOB_FAILED.labels(reason=reason).inc()


def job_rejected() -> None:
    _JOB_REJECTED.inc()


def provider_retry(label: str) -> None:
    _PROVIDER_RETRIES.labels(label=label).inc()


def observe_stage(stage: str, duration_sec: float) -> None:
    _STAGE_SEC.labels(stage=stage).observe(max(0.0, duration_sec))


def set_running(count: int) -> None:
    _RUNNING.set(count)
