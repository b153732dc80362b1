import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .adapters import ProviderAdapter, SubmitResult
from .errors import AuthError, InternalError, UpstreamError
from .model import GenerationRequest, ProviderKind
from .utils import auth_headers, error_text, http_client

logger = logging.getLogger(__name__)

WIDE = "1792x1024"
TALL = "1024x1792"
SQUARE = "1024x1024"

GENERIC_FAILURE = "Remote API Failed (Invalid Key for both Stability and OpenAI)"


def size_bucket(width: Optional[int], height: Optional[int]) -> str:
    """DALL-E 3 chỉ có 3 kích thước: chọn theo tỉ lệ width/height (ngưỡng tính cả biên)."""
    ratio = width / height if width and height else 1
    if ratio >= 1.3:
        return WIDE
    if ratio <= 0.7:
        return TALL
    return SQUARE


class OpenAIImageGenerator(ProviderAdapter):
    """Secondary provider of the remote fallback chain (DALL-E 3)."""

    kind = ProviderKind.OPENAI

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(client)
        self.base_url = (base_url or settings.OPENAI_API_BASE).rstrip("/")

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": "dall-e-3",
            "prompt": request.prompt,
            "n": 1,
            "size": size_bucket(request.width, request.height),
            "quality": "standard",
            "response_format": "url",
        }

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        api_key = self.require_key(request)
        headers = auth_headers(api_key, {"Content-Type": "application/json"})

        async with http_client(self.client) as c:
            r = await c.post(f"{self.base_url}/images/generations", json=self.build_payload(request), headers=headers)

        if not r.is_success:
            message = error_text(r, "error", "message") or GENERIC_FAILURE
            logger.error(f"[OpenAI] image generation failed with HTTP {r.status_code}: {message}")
            error_cls = AuthError if r.status_code in (401, 403) else UpstreamError
            raise error_cls(message, provider=self.kind.value, upstream_status=r.status_code, body=r.text)

        try:
            url = r.json()["data"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise InternalError("OpenAI returned a malformed image response") from None
        return SubmitResult(provider=self.kind, image_url=url)
