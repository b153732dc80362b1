"""Uniform submit/poll contract over heterogeneous generation backends.

Every provider is one ``ProviderAdapter`` subclass tagged with a
``ProviderKind``. Synchronous adapters answer ``submit`` with an artifact (or,
for ComfyUI, a queue id); asynchronous adapters answer with a
``BackgroundJob`` that the ``JobRegistry`` tracks and advances through
``poll``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import httpx

from .errors import ValidationError
from .model import BackgroundJob, GenerationRequest, JobStatus, OperationKind, ProviderKind
from .utils import gen_job_id


@dataclass
class SubmitResult:
    provider: ProviderKind
    image: Optional[str] = None  # base64 payload
    image_url: Optional[str] = None  # URL or data URL
    prompt_id: Optional[str] = None
    client_id: Optional[str] = None
    job: Optional[BackgroundJob] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        return self.job is not None


@dataclass
class PollOutcome:
    status: JobStatus
    progress: Optional[float] = None
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None


class ProviderAdapter(ABC):
    kind: ProviderKind
    is_async: bool = False

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> SubmitResult:
        """Send one request to the provider."""

    async def poll(self, job: BackgroundJob) -> PollOutcome:
        raise ValidationError(f"{self.kind.value} does not support polling")

    def require_key(self, request: GenerationRequest) -> str:
        if not request.api_key:
            raise ValidationError("API Key is required for remote generation.")
        return request.api_key

    def pending_job(
        self,
        request: GenerationRequest,
        job_id: Optional[str],
        operation: Optional[OperationKind] = None,
    ) -> BackgroundJob:
        return BackgroundJob(
            id=job_id or gen_job_id(),
            type=operation or request.operation,
            provider=self.kind,
            status=JobStatus.IN_PROGRESS,
            prompt=request.prompt or None,
            api_key=request.api_key or "",
        )


class AdapterRegistry:
    """Tra adapter theo ProviderKind; thêm provider mới = register thêm 1 adapter."""

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: Dict[ProviderKind, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.kind] = adapter

    def get(self, kind: ProviderKind) -> ProviderAdapter:
        try:
            return self._adapters[kind]
        except KeyError:
            raise ValidationError(f"Unsupported provider: {kind.value}") from None
