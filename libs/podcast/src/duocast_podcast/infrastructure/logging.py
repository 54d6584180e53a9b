from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime

from opentelemetry import trace
from rich.logging import RichHandler

_job_id: ContextVar[str | None] = ContextVar("job_id", default=None)


class JobIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _job_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple formatter
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "job_id": getattr(record, "job_id", None),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: int | str = logging.INFO, *, fmt: str = "plain") -> None:
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        format_str = "%(message)s"
    else:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        format_str = "[%(job_id)s] %(message)s"
    # Filters on the handler so records from every logger get the attribute.
    handler.addFilter(JobIdFilter())
    logging.basicConfig(level=level, format=format_str, datefmt="[%X]", handlers=[handler], force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def set_job_id(job_id: str | None) -> None:
    _job_id.set(job_id)


def get_job_id() -> str | None:
    return _job_id.get()


def clear_job_id() -> None:
    _job_id.set(None)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def maybe_init_tracing(service_name: str, endpoint: str | None) -> None:  # pragma: no cover - optional
    """Install an OTLP exporter when an endpoint is configured and the SDK is present."""
    if not endpoint:
        return
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logging.getLogger(__name__).warning("tracing requested but opentelemetry-sdk is not installed")
        return

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
