import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .adapters import PollOutcome, ProviderAdapter, SubmitResult
from .errors import InternalError, UpstreamError, ValidationError
from .model import BackgroundJob, GenerationRequest, JobStatus, OperationKind, ProviderKind
from .utils import auth_headers, error_text, http_client

logger = logging.getLogger(__name__)

ENDPOINTS = {
    OperationKind.TEXT_TO_3D: "text-to-3d",
    OperationKind.IMAGE_TO_3D: "image-to-3d",
}
JSON_CONTENT = {"Content-Type": "application/json"}


class MeshyAdapter(ProviderAdapter):
    kind = ProviderKind.MESHY
    is_async = True

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(client)
        self.base_url = (base_url or settings.MESHY_API_BASE).rstrip("/")

    def endpoint(self, operation: OperationKind) -> str:
        if operation not in ENDPOINTS:
            raise ValidationError(f"Unsupported Meshy operation: {operation.value}")
        return f"{self.base_url}/{ENDPOINTS[operation]}"

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        if request.operation == OperationKind.TEXT_TO_3D:
            if not request.prompt:
                raise ValidationError("Prompt is required for text-to-3d")
            body: Dict[str, Any] = {
                "mode": "preview",
                "prompt": request.prompt,
                "art_style": "realistic",
                "negative_prompt": "low quality, low res",
                "ai_model": "latest",
                "topology": "quad",
                "should_remesh": True,
            }
        else:
            if not request.image_url:
                raise ValidationError("image_url is required for image-to-3d")
            body = {
                "image_url": request.image_url,
                "enable_pbr": True,
                "should_texture": True,
                "should_remesh": True,
                "ai_model": "latest",
            }
        return {**body, **request.options}

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        api_key = self.require_key(request)
        url = self.endpoint(request.operation)
        payload = self.build_payload(request)

        async with http_client(self.client) as c:
            r = await c.post(url, json=payload, headers=auth_headers(api_key, JSON_CONTENT))

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        # v2 trả về {"result": "<task id>"}, một số version trả {"id": ...}
        task_id = data.get("result") or data.get("id")
        if not r.is_success or not task_id:
            message = error_text(r, "message") or "Unknown error"
            logger.error(f"[Meshy] task creation failed with HTTP {r.status_code}: {message}")
            raise UpstreamError(
                f"Meshy API Error: {message}",
                provider=self.kind.value,
                upstream_status=r.status_code,
                body=r.text,
            )
        return SubmitResult(provider=self.kind, job=self.pending_job(request, task_id))

    async def poll(self, job: BackgroundJob) -> PollOutcome:
        url = f"{self.endpoint(job.type)}/{job.id}"
        async with http_client(self.client) as c:
            r = await c.get(url, headers=auth_headers(job.api_key, JSON_CONTENT))

        if not r.is_success:
            return PollOutcome(JobStatus.FAILED, error_message=error_text(r, "message") or r.text)
        try:
            task = r.json()
        except ValueError:
            raise InternalError("Meshy returned a non-JSON task body") from None
        if not isinstance(task, dict):
            raise InternalError("Meshy returned an unexpected task body")

        state = task.get("status")
        progress = task.get("progress")
        outcome = PollOutcome(JobStatus.IN_PROGRESS, progress=progress / 100 if progress is not None else None)
        if state == "SUCCEEDED":
            outcome.status = JobStatus.SUCCEEDED
            outcome.progress = 1.0
            outcome.result_url = (task.get("model_urls") or {}).get("glb")
            outcome.thumbnail_url = task.get("thumbnail_url")
        elif state in ("FAILED", "EXPIRED"):
            outcome.status = JobStatus.FAILED
            outcome.error_message = (task.get("task_error") or {}).get("message") or f"Meshy task {state.lower()}"
        return outcome
