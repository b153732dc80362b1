# mediagen/model.py
from enum import Enum
from typing import Optional, Literal, Dict, Any, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .utils import get_timestamp_ms


class ProviderKind(str, Enum):
    COMFY = "comfy"
    REMOTE = "remote"  # base -> secondary fallback chain
    STABILITY = "stability"
    OPENAI = "openai"
    TRIPO = "tripo"
    MESHY = "meshy"


class OperationKind(str, Enum):
    GENERATE = "generate"
    GENERATE_CORE = "generate-core"
    IMG2IMG = "img2img"
    INPAINT = "inpaint"
    REMOVE_BACKGROUND = "remove-background"
    UPSCALE_CONSERVATIVE = "upscale-conservative"
    UPSCALE_CREATIVE = "upscale-creative"
    TEXT_TO_3D = "text-to-3d"
    IMAGE_TO_3D = "image-to-3d"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


# (filename, content, content_type) như httpx nhận trong files=
FilePart = Tuple[str, bytes, str]


class GenerationRequest(BaseModel):
    """Một yêu cầu sinh ảnh/3D. Không đổi sau khi submit."""

    model_config = ConfigDict(frozen=True)

    prompt: str = ""
    negative_prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    provider: Optional[ProviderKind] = None
    api_key: Optional[str] = Field(default=None, repr=False)
    operation: OperationKind = OperationKind.GENERATE
    server_url: Optional[str] = None
    seed: Optional[int] = None
    image_url: Optional[str] = None
    form: Dict[str, str] = Field(default_factory=dict)
    files: Dict[str, FilePart] = Field(default_factory=dict, repr=False)
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_local(self) -> bool:
        return self.provider == ProviderKind.COMFY


class BackgroundJob(BaseModel):
    id: str
    type: OperationKind
    provider: ProviderKind
    status: JobStatus = JobStatus.PENDING
    progress: Optional[float] = None  # 0..1
    prompt: Optional[str] = None
    api_key: str = Field(repr=False)
    owner: Optional[str] = None
    created_at: int = Field(default_factory=get_timestamp_ms)
    updated_at: int = Field(default_factory=get_timestamp_ms)
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None

    def public(self) -> Dict[str, Any]:
        """Outward view of the job, without the stored credential."""
        return self.model_dump(mode="json", exclude={"api_key", "owner"})


# ---- HTTP request bodies ----

class GenerateImageRequest(BaseModel):
    prompt: str
    negative_prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    provider: Optional[ProviderKind] = None
    server_url: Optional[str] = None
    api_key: Optional[str] = None
    seed: Optional[int] = None


class ThreeDRequest(BaseModel):
    type: Literal["text-to-3d", "image-to-3d"] = "text-to-3d"
    prompt: Optional[str] = None
    image_url: Optional[str] = None
    options: Dict[str, Any] = {}
