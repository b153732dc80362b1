import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .adapters import ProviderAdapter, SubmitResult
from .errors import InternalError, UpstreamError
from .model import GenerationRequest, ProviderKind
from .utils import http_client
from .workflow_builder import WorkflowGraph, build_text_to_image_workflow, save_debug_workflow

logger = logging.getLogger(__name__)


async def send_workflow_to_comfy(
    workflow: WorkflowGraph,
    client_id: str,
    host: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Gửi 1 workflow sang ComfyUI /prompt.
    Trả về prompt_id dùng để query /history (phía caller).
    """
    base = (host or settings.COMFYUI_URL).rstrip("/")
    payload = {
        "prompt": workflow.to_prompt(),
        "client_id": client_id,
    }

    async with http_client(client) as c:
        r = await c.post(f"{base}/prompt", json=payload)

    if r.status_code != 200:
        logger.error(f"[ComfyClient] ComfyUI returned {r.status_code}: {r.text[:500]}")
        raise UpstreamError(
            "Failed to queue prompt on ComfyUI",
            provider=ProviderKind.COMFY.value,
            upstream_status=r.status_code,
            body=r.text,
        )

    try:
        data: Dict[str, Any] = r.json()
    except ValueError:
        data = {}
    # ComfyUI trả về {"prompt_id": "...", "number": ..., "node_errors": {}}
    prompt_id = data.get("prompt_id") if isinstance(data, dict) else None
    if not prompt_id:
        raise InternalError(f"ComfyUI did not return a prompt_id: {r.text[:200]}")
    logger.info(f"[ComfyClient] Got prompt_id: {prompt_id}")
    return prompt_id


class LocalGraphAdapter(ProviderAdapter):
    """Self-hosted ComfyUI. Chỉ queue workflow; ảnh được caller lấy sau qua /history."""

    kind = ProviderKind.COMFY

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        workflow = build_text_to_image_workflow(
            request.prompt,
            negative_prompt=request.negative_prompt,
            width=request.width,
            height=request.height,
            seed=request.seed,
        )
        client_id = str(uuid.uuid4())
        logger.info(f"[ComfyClient] Sending workflow ({len(workflow)} nodes), client_id={client_id}")
        save_debug_workflow(workflow, f"debug_gen_{client_id[:8]}.json")

        prompt_id = await send_workflow_to_comfy(
            workflow, client_id, host=request.server_url, client=self.client
        )
        return SubmitResult(provider=self.kind, prompt_id=prompt_id, client_id=client_id)
