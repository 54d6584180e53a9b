from __future__ import annotations

from typing import Callable, List

from duocast_contracts.errors import JobNotFoundError, JobStateError
from duocast_contracts.podcast_job import Job, JobArtifacts, JobStatus
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.storage.fs_store import utcnow

log = get_logger(__name__)


def _redis_client(redis_url: str):
    try:
        import redis.asyncio as redis  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("redis is required for JOB_STORE=redis. Install with `pip install redis`.") from e
    return redis.Redis.from_url(redis_url, decode_responses=True)


class RedisJobStore:
    """Jobs as hashes plus lexically ordered indexes.

    Job ids start with a fixed-width hex timestamp, so a sorted set with every
    score at 0 orders members by id, which is creation order.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", *, prefix: str = "duocast", client=None) -> None:
        self.client = client or _redis_client(redis_url)
        self.prefix = prefix

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def _index(self, owner_id: str | None = None) -> str:
        return f"{self.prefix}:owner:{owner_id}" if owner_id else f"{self.prefix}:jobs"

    async def create_job(self, job: Job) -> None:
        key = self._key(job.job_id)
        created = await self.client.hsetnx(key, "doc", job.model_dump_json())
        if not created:
            raise JobStateError(f"job {job.job_id} already exists")
        indexes = {self._index(): {job.job_id: 0}}
        if job.owner_id:
            indexes[self._index(job.owner_id)] = {job.job_id: 0}
        for index, member in indexes.items():
            await self.client.zadd(index, member)

    async def _load(self, job_id: str) -> Job:
        raw = await self.client.hget(self._key(job_id), "doc")
        if raw is None:
            raise JobNotFoundError(f"job {job_id!r} not found")
        return Job.model_validate_json(raw)

    async def _mutate(self, job_id: str, change: Callable[[Job], Job | None]) -> Job | None:
        """Optimistic read-modify-write; retried when another writer got in first."""
        from redis.exceptions import WatchError  # type: ignore

        key = self._key(job_id)
        while True:
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hget(key, "doc")
                    if raw is None:
                        raise JobNotFoundError(f"job {job_id!r} not found")
                    updated = change(Job.model_validate_json(raw))
                    if updated is None:
                        await pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.hset(key, "doc", updated.model_dump_json())
                    await pipe.execute()
                    return updated
                except WatchError:
                    log.debug("jobs.redis.retry job_id=%s", job_id)
                    continue

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
        return await self._load(job_id)

    async def list_jobs(
        self, *, limit: int = 20, cursor: str | None = None, owner_id: str | None = None
    ) -> tuple[List[Job], str | None]:
        upper = f"({cursor}" if cursor else "+"
        ids = await self.client.zrevrangebylex(self._index(owner_id), upper, "-", start=0, num=limit + 1)
        page, more = ids[:limit], len(ids) > limit
        jobs: List[Job] = []
        for job_id in page:
            try:
                jobs.append(await self._load(job_id))
            except JobNotFoundError:
                log.warning("jobs.list.skip job_id=%s error=missing", job_id)
        return jobs, (page[-1] if more and page else None)

    async def aclose(self) -> None:
        await self.client.aclose()
