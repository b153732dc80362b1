"""Background job registry and the pull-model polling state machine.

PENDING/IN_PROGRESS jobs only move when a caller polls them; each poll asks the
owning provider adapter once and applies the outcome. SUCCEEDED and FAILED are
terminal: a terminal job is returned as-is and never re-queried.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis

from .adapters import AdapterRegistry, PollOutcome
from .errors import NotFoundError, ValidationError
from .model import BackgroundJob, JobStatus
from .utils import get_timestamp_ms

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "job:"


class JobStore(ABC):
    name: str

    @abstractmethod
    async def get(self, job_id: str) -> Optional[BackgroundJob]: ...

    @abstractmethod
    async def put(self, job: BackgroundJob) -> None: ...

    @abstractmethod
    async def delete(self, job_id: str) -> None: ...

    @abstractmethod
    async def all(self) -> List[BackgroundJob]: ...


class MemoryJobStore(JobStore):
    """Sống cùng process; không tự expire, caller tự evict."""

    name = "memory"

    def __init__(self) -> None:
        self._jobs: Dict[str, BackgroundJob] = {}

    async def get(self, job_id: str) -> Optional[BackgroundJob]:
        return self._jobs.get(job_id)

    async def put(self, job: BackgroundJob) -> None:
        self._jobs[job.id] = job

    async def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def all(self) -> List[BackgroundJob]:
        return list(self._jobs.values())


class RedisJobStore(JobStore):
    """job:{id} -> JSON. ttl > 0 thì key tự hết hạn sau ttl giây (tính từ lần ghi cuối)."""

    name = "redis"

    def __init__(self, rds: redis.Redis, ttl: int = 0):
        self.rds = rds
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 0) -> "RedisJobStore":
        return cls(redis.from_url(url, decode_responses=True), ttl=ttl)

    async def get(self, job_id: str) -> Optional[BackgroundJob]:
        data = await self.rds.get(f"{JOB_KEY_PREFIX}{job_id}")
        if not data:
            return None
        return BackgroundJob.model_validate_json(data)

    async def put(self, job: BackgroundJob) -> None:
        await self.rds.set(
            f"{JOB_KEY_PREFIX}{job.id}",
            job.model_dump_json(),
            ex=self.ttl or None,
        )

    async def delete(self, job_id: str) -> None:
        await self.rds.delete(f"{JOB_KEY_PREFIX}{job_id}")

    async def all(self) -> List[BackgroundJob]:
        jobs = []
        async for key in self.rds.scan_iter(match=f"{JOB_KEY_PREFIX}*"):
            data = await self.rds.get(key)
            if data:
                jobs.append(BackgroundJob.model_validate_json(data))
        return jobs


class JobRegistry:
    def __init__(self, store: JobStore, adapters: AdapterRegistry):
        self.store = store
        self.adapters = adapters

    async def create(self, job: BackgroundJob, owner: Optional[str] = None) -> BackgroundJob:
        if job.status.is_terminal:
            raise ValidationError(f"Job {job.id} cannot be created in terminal state {job.status.value}")
        if owner is not None:
            job = job.model_copy(update={"owner": owner})
        await self.store.put(job)
        logger.info(f"[Jobs] created {job.provider.value} job {job.id} ({job.status.value})")
        return job

    async def get(self, job_id: str, owner: Optional[str] = None) -> BackgroundJob:
        if not job_id or not job_id.strip():
            raise ValidationError("Missing job id")
        job = await self.store.get(job_id)
        # Job của session khác coi như không tồn tại
        if job is None or (job.owner is not None and job.owner != owner):
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def list(self, owner: Optional[str] = None) -> List[BackgroundJob]:
        jobs = [j for j in await self.store.all() if j.owner is None or j.owner == owner]
        return sorted(jobs, key=lambda j: j.created_at)

    async def transition(self, job_id: str, outcome: PollOutcome) -> BackgroundJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job.status.is_terminal:
            logger.warning(
                f"[Jobs] ignoring {outcome.status.value} for job {job_id}, already {job.status.value}"
            )
            return job

        # Artifact chỉ ghi khi SUCCEEDED, error chỉ ghi khi FAILED
        fields = ["progress"]
        if outcome.status == JobStatus.SUCCEEDED:
            fields += ["result_url", "thumbnail_url"]
        elif outcome.status == JobStatus.FAILED:
            fields.append("error_message")

        update = {"status": outcome.status, "updated_at": get_timestamp_ms()}
        for name in fields:
            value = getattr(outcome, name)
            if value is not None:
                update[name] = value
        job = job.model_copy(update=update)
        await self.store.put(job)
        if job.status != JobStatus.IN_PROGRESS:
            logger.info(f"[Jobs] job {job_id} -> {job.status.value}")
        return job

    async def poll(self, job_id: str, owner: Optional[str] = None) -> BackgroundJob:
        job = await self.get(job_id, owner)
        if job.status.is_terminal:
            return job
        adapter = self.adapters.get(job.provider)
        outcome = await adapter.poll(job)
        return await self.transition(job.id, outcome)

    async def evict(self, job_id: str, owner: Optional[str] = None) -> None:
        job = await self.get(job_id, owner)
        await self.store.delete(job.id)
        logger.info(f"[Jobs] evicted job {job.id}")
