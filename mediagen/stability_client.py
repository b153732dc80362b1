import base64
import binascii
import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .adapters import PollOutcome, ProviderAdapter, SubmitResult
from .errors import AuthError, InternalError, UpstreamError, ValidationError
from .model import BackgroundJob, GenerationRequest, JobStatus, OperationKind, ProviderKind
from .utils import auth_headers, error_text, http_client, png_data_url, snap_down

logger = logging.getLogger(__name__)

SDXL_ENGINE = "stable-diffusion-xl-1024-v1-0"
DEFAULT_SIZE = 1024
SIZE_MULTIPLE = 64

# 401/403/404 từ Stability thường là "sai loại key" -> cho phép thử provider khác
AUTH_STATUSES = frozenset({401, 403, 404})

ACCEPT_JSON = {"Accept": "application/json"}
JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}

V2_ENDPOINTS: Dict[OperationKind, str] = {
    OperationKind.GENERATE_CORE: "generate/core",
    OperationKind.IMG2IMG: "generate/sd3",
    OperationKind.INPAINT: "edit/inpaint",
    OperationKind.REMOVE_BACKGROUND: "edit/remove-background",
    OperationKind.UPSCALE_CONSERVATIVE: "upscale/conservative",
    OperationKind.UPSCALE_CREATIVE: "upscale/creative",
}


def _json(r: httpx.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        raise InternalError(f"Stability returned a non-JSON body (HTTP {r.status_code})") from None
    if not isinstance(data, dict):
        raise InternalError("Stability returned an unexpected body")
    return data


class StabilityGenerator(ProviderAdapter):
    """Base provider of the remote fallback chain (SDXL v1 text-to-image)."""

    kind = ProviderKind.STABILITY

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(client)
        self.base_url = (base_url or settings.STABILITY_API_BASE).rstrip("/")

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "text_prompts": [{"text": request.prompt}],
            "cfg_scale": 7,
            "height": snap_down(request.height, SIZE_MULTIPLE, DEFAULT_SIZE),
            "width": snap_down(request.width, SIZE_MULTIPLE, DEFAULT_SIZE),
            "steps": 30,
            "samples": 1,
        }

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        api_key = self.require_key(request)
        url = f"{self.base_url}/v1/generation/{SDXL_ENGINE}/text-to-image"
        headers = auth_headers(api_key, JSON_HEADERS)

        async with http_client(self.client) as c:
            r = await c.post(url, json=self.build_payload(request), headers=headers)

        if r.is_success:
            data = _json(r)
            try:
                b64 = data["artifacts"][0]["base64"]
                base64.b64decode(b64, validate=True)
            except (KeyError, IndexError, TypeError, binascii.Error):
                raise InternalError("Stability returned a malformed artifact") from None
            return SubmitResult(provider=self.kind, image=b64, image_url=png_data_url(b64))

        message = error_text(r, "message")
        logger.warning(f"[Stability] text-to-image failed with HTTP {r.status_code}")
        if r.status_code in AUTH_STATUSES:
            raise AuthError(
                f"Stability AI rejected the key: {message or r.reason_phrase}",
                provider=self.kind.value,
                upstream_status=r.status_code,
                body=r.text,
            )
        raise UpstreamError(
            f"Stability AI Error: {message or 'Unknown'}",
            provider=self.kind.value,
            upstream_status=r.status_code,
            body=r.text,
        )


class StabilityAdapter(ProviderAdapter):
    """
    Các thao tác v2beta gọi thẳng 1 endpoint: forward nguyên multipart body
    của caller, dịch response: 2xx -> ảnh, 202 -> job đang xử lý, còn lại -> lỗi.
    """

    kind = ProviderKind.STABILITY
    is_async = True

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(client)
        self.base_url = (base_url or settings.STABILITY_API_BASE).rstrip("/")

    def endpoint(self, operation: OperationKind) -> str:
        path = V2_ENDPOINTS.get(operation)
        if path is None:
            raise ValidationError(f"Unsupported Stability operation: {operation.value}")
        return f"{self.base_url}/v2beta/stable-image/{path}"

    def result_url(self, job: BackgroundJob) -> str:
        if job.type == OperationKind.UPSCALE_CREATIVE:
            return f"{self.base_url}/v2beta/stable-image/upscale/creative/result/{job.id}"
        return f"{self.base_url}/v2beta/results/{job.id}"

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        api_key = self.require_key(request)
        url = self.endpoint(request.operation)
        # Stability chỉ nhận multipart; không có file thì gửi 1 part rỗng
        files = dict(request.files) or {"none": b""}

        async with http_client(self.client) as c:
            r = await c.post(url, headers=auth_headers(api_key, ACCEPT_JSON), data=dict(request.form), files=files)

        if r.status_code == 202:
            job_id = _json(r).get("id")
            if not job_id:
                raise InternalError("Stability accepted the request without a job id")
            logger.info(f"[Stability] {request.operation.value} accepted as job {job_id}")
            return SubmitResult(provider=self.kind, job=self.pending_job(request, job_id))

        if not r.is_success:
            logger.error(f"[Stability] {request.operation.value} error {r.status_code}: {r.text[:300]}")
            raise UpstreamError(
                f"Stability API Error: {r.text}",
                provider=self.kind.value,
                upstream_status=r.status_code,
                body=r.text,
            )

        data = _json(r)
        image = data.get("image")
        if not image:
            raise InternalError("Stability response has no image")
        metadata = {k: data[k] for k in ("seed", "finish_reason") if data.get(k) is not None}
        return SubmitResult(provider=self.kind, image=image, metadata=metadata)

    async def poll(self, job: BackgroundJob) -> PollOutcome:
        async with http_client(self.client) as c:
            r = await c.get(self.result_url(job), headers=auth_headers(job.api_key, ACCEPT_JSON))

        # 202 = vẫn đang xử lý
        if r.status_code == 202:
            return PollOutcome(JobStatus.IN_PROGRESS)
        if r.is_success:
            image = _json(r).get("image")
            if not image:
                raise InternalError("Stability result has no image")
            return PollOutcome(JobStatus.SUCCEEDED, progress=1.0, result_url=png_data_url(image))
        return PollOutcome(JobStatus.FAILED, error_message=r.text or f"HTTP {r.status_code}")
