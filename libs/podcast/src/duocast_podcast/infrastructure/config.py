from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field


def load_env(env_path: Path | None = None) -> None:
    from dotenv import load_dotenv

    if env_path is None:
        env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    val = env.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


class ProviderKeys(BaseModel):
    anthropic: str | None = None
    gemini: str | None = None
    elevenlabs: str | None = None
    openrouter: str | None = None
    minimax: str | None = None
    google: str | None = None

    def merged(self, overrides: Mapping[str, str]) -> "ProviderKeys":
        """Per-request keys win over the server defaults."""
        return self.model_copy(update={k: v for k, v in overrides.items() if v})


class Settings(BaseModel):
    """Process configuration. Built once at startup and passed to each component."""

    data_dir: Path = Path("data")
    max_concurrent_jobs: int = Field(default=5, ge=1)
    progress_interval_s: float = 2.0
    shutdown_fail_timeout_s: float = 5.0
    segment_silence_ms: int = 200
    disable_batch: bool = False
    tts_concurrency: int = Field(default=1, ge=1)
    refine_scripts: bool = True

    default_script_backend: str = "haiku"
    default_tts_backend: str = "gemini"
    openrouter_model: str = "minimax/minimax-m2.1"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"
    piper_model_path: str | None = None

    keys: ProviderKeys = Field(default_factory=ProviderKeys)

    job_store: str = "fs"
    redis_url: str = "redis://localhost:6379/0"
    media_base_url: str = "http://localhost:8000/media"

    api_key: str | None = None
    log_level: str = "INFO"
    log_format: str = "plain"
    metrics_enabled: bool = False
    metrics_port: int = 9000
    otel_endpoint: str | None = None

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def media_dir(self) -> Path:
        return self.data_dir / "media"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        keys = ProviderKeys(
            anthropic=env.get("ANTHROPIC_API_KEY"),
            gemini=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY"),
            elevenlabs=env.get("ELEVENLABS_API_KEY"),
            openrouter=env.get("OPENROUTER_API_KEY"),
            minimax=env.get("MINIMAX_API_KEY"),
            google=env.get("GOOGLE_TTS_API_KEY"),
        )
        return cls(
            data_dir=Path(env.get("DATA_DIR", "data")),
            max_concurrent_jobs=int(env.get("MAX_CONCURRENT_JOBS", "5")),
            progress_interval_s=float(env.get("PROGRESS_INTERVAL_S", "2.0")),
            shutdown_fail_timeout_s=float(env.get("SHUTDOWN_FAIL_TIMEOUT_S", "5.0")),
            segment_silence_ms=int(env.get("SEGMENT_SILENCE_MS", "200")),
            disable_batch=_env_bool(env, "TTS_DISABLE_BATCH"),
            tts_concurrency=int(env.get("TTS_CONCURRENCY", "1")),
            refine_scripts=_env_bool(env, "REFINE_SCRIPTS", True),
            default_script_backend=env.get("SCRIPT_BACKEND", "haiku"),
            default_tts_backend=env.get("TTS_BACKEND", "gemini"),
            openrouter_model=env.get("OPENROUTER_MODEL", "minimax/minimax-m2.1"),
            ollama_base_url=env.get("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=env.get("OLLAMA_MODEL", "llama3.1"),
            piper_model_path=env.get("PIPER_MODEL_PATH"),
            keys=keys,
            job_store=env.get("JOB_STORE", "fs").lower(),
            redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
            media_base_url=env.get("MEDIA_BASE_URL", "http://localhost:8000/media").rstrip("/"),
            api_key=env.get("API_KEY") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_format=env.get("LOG_FORMAT", "plain").lower(),
            metrics_enabled=_env_bool(env, "METRICS_ENABLED") or _env_bool(env, "PROMETHEUS_ENABLED"),
            metrics_port=int(env.get("METRICS_PORT", "9000")),
            otel_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        )
