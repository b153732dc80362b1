import logging
from typing import List, Optional

import httpx

from config.settings import settings

from .adapters import AdapterRegistry, SubmitResult
from .comfy_client import LocalGraphAdapter
from .fallback import FallbackCoordinator
from .jobs import JobRegistry, JobStore, MemoryJobStore, RedisJobStore
from .meshy_client import MeshyAdapter
from .model import BackgroundJob, GenerationRequest, OperationKind, ProviderKind
from .openai_client import OpenAIImageGenerator
from .stability_client import StabilityAdapter, StabilityGenerator
from .tripo_client import TripoAdapter

logger = logging.getLogger(__name__)


class MediaService:
    """
    Điểm vào duy nhất cho API:
    - operation generate -> FallbackCoordinator (comfy local, mọi provider khác đi qua chuỗi remote)
    - operation khác -> adapter của provider; adapter async trả job thì đăng ký vào JobRegistry
    """

    def __init__(self, coordinator: FallbackCoordinator, adapters: AdapterRegistry, jobs: JobRegistry):
        self.coordinator = coordinator
        self.adapters = adapters
        self.jobs = jobs

    async def submit(self, request: GenerationRequest, owner: Optional[str] = None) -> SubmitResult:
        if request.operation == OperationKind.GENERATE:
            return await self.coordinator.generate(request)

        adapter = self.adapters.get(request.provider or ProviderKind.STABILITY)
        result = await adapter.submit(request)
        if adapter.is_async and result.pending:
            result.job = await self.jobs.create(result.job, owner=owner)
        return result

    async def get_job(self, job_id: str, owner: Optional[str] = None) -> BackgroundJob:
        return await self.jobs.get(job_id, owner)

    async def list_jobs(self, owner: Optional[str] = None) -> List[BackgroundJob]:
        return await self.jobs.list(owner)

    async def poll_job(self, job_id: str, owner: Optional[str] = None) -> BackgroundJob:
        return await self.jobs.poll(job_id, owner)

    async def evict_job(self, job_id: str, owner: Optional[str] = None) -> None:
        await self.jobs.evict(job_id, owner)


def build_store() -> JobStore:
    if settings.REDIS_URL:
        return RedisJobStore.from_url(settings.REDIS_URL, ttl=settings.JOB_TTL_SECONDS)
    return MemoryJobStore()


def build_service(
    client: Optional[httpx.AsyncClient] = None,
    store: Optional[JobStore] = None,
) -> MediaService:
    adapters = AdapterRegistry([
        StabilityAdapter(client),
        TripoAdapter(client),
        MeshyAdapter(client),
    ])
    coordinator = FallbackCoordinator(
        LocalGraphAdapter(client),
        [StabilityGenerator(client), OpenAIImageGenerator(client)],
    )
    store = store or build_store()
    logger.info(f"[Service] job store: {store.name}")
    return MediaService(coordinator, adapters, JobRegistry(store, adapters))
