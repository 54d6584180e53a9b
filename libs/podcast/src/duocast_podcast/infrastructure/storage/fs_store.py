from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List

from duocast_contracts.errors import JobNotFoundError, JobStateError
from duocast_contracts.podcast_job import Job, JobArtifacts, JobStatus
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _write_atomic(path: Path, content: bytes, *, retries: int = 3, backoff_s: float = 0.2) -> None:
    """Write to a sibling temp file and rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    last_exc: OSError | None = None
    for attempt in range(max(1, retries)):
        tmp: str | None = None
        try:
            with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False) as fh:
                tmp = fh.name
                fh.write(content)
            os.replace(tmp, path)
            return
        except OSError as exc:
            last_exc = exc
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            time.sleep(backoff_s * (2**attempt))
    if last_exc:
        raise last_exc


class FileSystemJobStore:
    """One JSON document per job under ``base_dir``.

    Each read-check-write runs start to finish in one worker thread under a
    per-store lock. A caller cancelled mid-write cannot release the lock while
    its write is still in flight, so a later terminal write always lands last.
    Job ids sort by creation time, so listing newest-first is a reverse sort
    on file names.
    """

    def __init__(self, base_dir: str | Path, *, write_retries: int = 3, write_backoff_s: float = 0.2) -> None:
        self.base_dir = Path(base_dir)
        self.write_retries = write_retries
        self.write_backoff_s = write_backoff_s
        self._lock = threading.Lock()

    def _path(self, job_id: str) -> Path:
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise JobNotFoundError(f"job {job_id!r} not found")
        return self.base_dir / f"{job_id}.json"

    def _read(self, job_id: str) -> Job:
        path = self._path(job_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise JobNotFoundError(f"job {job_id!r} not found") from e
        return Job.model_validate_json(raw)

    def _write(self, job: Job) -> None:
        _write_atomic(
            self._path(job.job_id),
            job.model_dump_json(indent=2).encode("utf-8"),
            retries=self.write_retries,
            backoff_s=self.write_backoff_s,
        )

    def _apply(self, job_id: str, change: Callable[[Job], Job | None]) -> Job | None:
        with self._lock:
            updated = change(self._read(job_id))
            if updated is not None:
                self._write(updated)
            return updated

    async def _mutate(self, job_id: str, change: Callable[[Job], Job | None]) -> Job | None:
        return await asyncio.to_thread(self._apply, job_id, change)

    def _create(self, job: Job) -> None:
        with self._lock:
            if self._path(job.job_id).exists():
                raise JobStateError(f"job {job.job_id} already exists")
            self._write(job)

    async def create_job(self, job: Job) -> None:
        await asyncio.to_thread(self._create, job)

    async def update_progress(self, job_id: str, *, status: JobStatus, progress: float, message: str) -> None:
        def change(job: Job) -> Job:
            if not job.status.can_advance_to(status):
                raise JobStateError(f"job {job_id}: cannot move from {job.status.value} to {status.value}")
            return job.model_copy(
                update={
                    "status": status,
                    "progress": min(1.0, max(job.progress, progress)),
                    "stage_message": message,
                    "updated_at": utcnow(),
                }
            )

        await self._mutate(job_id, change)

    async def complete_job(self, job_id: str, artifacts: JobArtifacts) -> None:
        def change(job: Job) -> Job:
            if job.status.terminal:
                raise JobStateError(f"job {job_id} is already {job.status.value}")
            return job.model_copy(
                update={
                    "status": JobStatus.COMPLETE,
                    "progress": 1.0,
                    "stage_message": "complete",
                    "artifacts": artifacts,
                    "updated_at": utcnow(),
                }
            )

        await self._mutate(job_id, change)

    async def fail_job(self, job_id: str, reason: str) -> bool:
        def change(job: Job) -> Job | None:
            if job.status.terminal:
                return None
            return job.model_copy(
                update={"status": JobStatus.FAILED, "error": reason, "stage_message": "failed", "updated_at": utcnow()}
            )

        return await self._mutate(job_id, change) is not None

    async def get_job(self, job_id: str) -> Job:
        return await asyncio.to_thread(self._read, job_id)

    async def list_jobs(
        self, *, limit: int = 20, cursor: str | None = None, owner_id: str | None = None
    ) -> tuple[List[Job], str | None]:
        return await asyncio.to_thread(self._list, limit, cursor, owner_id)

    def _list(self, limit: int, cursor: str | None, owner_id: str | None) -> tuple[List[Job], str | None]:
        if not self.base_dir.exists():
            return [], None
        ids = sorted((p.stem for p in self.base_dir.glob("*.json") if not p.name.startswith(".")), reverse=True)
        if cursor:
            ids = [i for i in ids if i < cursor]
        jobs: List[Job] = []
        last_seen: str | None = None
        for job_id in ids:
            last_seen = job_id
            try:
                job = self._read(job_id)
            except (JobNotFoundError, ValueError) as exc:
                log.warning("jobs.list.skip job_id=%s error=%s", job_id, exc)
                continue
            if owner_id is not None and job.owner_id != owner_id:
                continue
            jobs.append(job)
            if len(jobs) >= limit:
                break
        more = len(jobs) >= limit and last_seen is not None and any(i < last_seen for i in ids)
        return jobs, (last_seen if more else None)


class FileSystemObjectStorage:
    """Copies finished artifacts under a media root served at ``base_url``."""

    def __init__(self, root: str | Path, *, base_url: str = "/media") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def key_for(job_id: str, local_file: Path) -> str:
        suffix = local_file.suffix.lower()
        if suffix == ".json":
            return f"scripts/{job_id}.json"
        return f"audio/{job_id}{suffix or '.mp3'}"

    async def upload(self, job_id: str, local_file: Path) -> tuple[str, str]:
        local_file = Path(local_file)
        key = self.key_for(job_id, local_file)
        dest = self.root / key
        await asyncio.to_thread(self._copy, local_file, dest)
        log.info("storage.upload key=%s bytes=%s", key, dest.stat().st_size)
        return key, f"{self.base_url}/{key}"

    @staticmethod
    def _copy(src: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(f".{dest.name}.tmp")
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
