import logging
from typing import Dict, List, Optional, Sequence

from .adapters import ProviderAdapter, SubmitResult
from .errors import AuthError, MediaGenError, ValidationError
from .model import GenerationRequest

logger = logging.getLogger(__name__)


class FallbackCoordinator:
    """
    Sinh ảnh qua ComfyUI (provider=comfy) hoặc qua chuỗi provider remote.

    Remote: thử lần lượt theo thứ tự ưu tiên. Chỉ chuyển sang provider kế tiếp
    khi provider hiện tại từ chối key (AuthError). Lỗi khác (hết quota, sai
    tham số...) được trả về ngay. Khi provider cuối cùng cũng lỗi, message là
    của provider cuối; lỗi của các provider trước nằm trong
    ``details["provider_errors"]``.
    """

    def __init__(self, local: Optional[ProviderAdapter], chain: Sequence[ProviderAdapter]):
        if not chain:
            raise ValueError("fallback chain needs at least one provider")
        self.local = local
        self.chain: List[ProviderAdapter] = list(chain)

    async def generate(self, request: GenerationRequest) -> SubmitResult:
        if request.is_local:
            if self.local is None:
                raise ValidationError("Local engine is not configured")
            return await self.local.submit(request)

        # Validate trước khi gọi mạng
        if not request.api_key:
            raise ValidationError("API Key is required for remote generation.")

        provider_errors: Dict[str, str] = {}
        last = len(self.chain) - 1
        for i, adapter in enumerate(self.chain):
            name = adapter.kind.value
            try:
                result = await adapter.submit(request)
            except AuthError as e:
                provider_errors[name] = e.message
                if i == last:
                    raise self._with_history(e, provider_errors)
                logger.info(f"[Fallback] {name} rejected the key (HTTP {e.upstream_status}), escalating")
                continue
            except MediaGenError as e:
                provider_errors[name] = e.message
                if i == last:
                    raise self._with_history(e, provider_errors)
                raise
            logger.info(f"[Fallback] generated with {name} after {i} escalation(s)")
            return result

    @staticmethod
    def _with_history(error: MediaGenError, provider_errors: Dict[str, str]) -> MediaGenError:
        if len(provider_errors) > 1:
            error.details = {**error.details, "provider_errors": dict(provider_errors)}
        return error
