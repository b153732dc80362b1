import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .adapters import PollOutcome, ProviderAdapter, SubmitResult
from .errors import InternalError, UpstreamError, ValidationError
from .model import BackgroundJob, GenerationRequest, JobStatus, OperationKind, ProviderKind
from .utils import auth_headers, error_text, http_client

logger = logging.getLogger(__name__)

FAILED_STATES = ("failed", "cancelled")


def _first(mapping: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        if mapping.get(key):
            return mapping[key]
    return None


class TripoAdapter(ProviderAdapter):
    """Tripo3D: tạo task text/image -> model 3D, rồi poll task/{id}."""

    kind = ProviderKind.TRIPO
    is_async = True

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(client)
        self.base_url = (base_url or settings.TRIPO_API_BASE).rstrip("/")

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        if request.operation == OperationKind.TEXT_TO_3D:
            if not request.prompt:
                raise ValidationError("Prompt is required for text-to-3d")
            body: Dict[str, Any] = {"type": "text_to_model", "prompt": request.prompt}
        elif request.operation == OperationKind.IMAGE_TO_3D:
            if not request.image_url:
                raise ValidationError("image_url is required for image-to-3d")
            body = {"type": "image_to_model", "file": {"type": "png", "url": request.image_url}}
        else:
            raise ValidationError(f"Unsupported Tripo operation: {request.operation.value}")
        return {**body, **request.options}

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        api_key = self.require_key(request)
        payload = self.build_payload(request)

        async with http_client(self.client) as c:
            r = await c.post(
                f"{self.base_url}/task",
                json=payload,
                headers=auth_headers(api_key),
            )

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        task = data.get("data")
        task_id = task.get("task_id") if isinstance(task, dict) else None
        if not r.is_success or data.get("code") != 0 or not task_id:
            message = error_text(r, "message") or "Unknown error"
            logger.error(f"[Tripo] task creation failed with HTTP {r.status_code}: {message}")
            raise UpstreamError(
                f"Error starting Tripo generation: {message}",
                provider=self.kind.value,
                upstream_status=r.status_code,
                body=r.text,
            )
        return SubmitResult(provider=self.kind, job=self.pending_job(request, task_id))

    async def poll(self, job: BackgroundJob) -> PollOutcome:
        async with http_client(self.client) as c:
            r = await c.get(f"{self.base_url}/task/{job.id}", headers=auth_headers(job.api_key))

        if not r.is_success:
            return PollOutcome(JobStatus.FAILED, error_message=error_text(r, "message") or r.text)
        try:
            body = r.json()
        except ValueError:
            raise InternalError("Tripo returned a non-JSON task body") from None
        if not isinstance(body, dict):
            raise InternalError("Tripo returned an unexpected task body")

        task = body.get("data")
        if not task:
            if body.get("code") not in (None, 0):
                return PollOutcome(JobStatus.FAILED, error_message=body.get("message") or "Tripo task failed")
            raise InternalError("Tripo task body has no data")
        if not isinstance(task, dict):
            raise InternalError("Tripo returned an unexpected task data")

        state = task.get("status")
        progress = task.get("progress")
        output = task.get("output") or {}
        outcome = PollOutcome(JobStatus.IN_PROGRESS, progress=progress / 100 if progress is not None else None)
        if state == "success":
            outcome.status = JobStatus.SUCCEEDED
            outcome.progress = 1.0
            outcome.result_url = _first(output, "model", "pbr_model", "base_model")
            outcome.thumbnail_url = _first(output, "rendered_image", "render_image")
        elif state in FAILED_STATES:
            outcome.status = JobStatus.FAILED
            outcome.error_message = f"Tripo task {state}"
        return outcome
