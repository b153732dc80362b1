# mediagen/app.py

import logging
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from config.settings import settings

from .adapters import SubmitResult
from .errors import InternalError, MediaGenError, UpstreamError, ValidationError
from .logging_utils import jlog, setup_logging
from .model import GenerateImageRequest, GenerationRequest, OperationKind, ProviderKind, ThreeDRequest
from .service import MediaService, build_service
from .utils import bearer_token

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="MediaGen Orchestrator")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Tạo 1 instance service dùng chung
service = build_service()


def get_service() -> MediaService:
    return service


STABILITY_OPERATIONS = {
    "generate": OperationKind.GENERATE_CORE,
    "img2img": OperationKind.IMG2IMG,
    "inpaint": OperationKind.INPAINT,
    "remove-bg": OperationKind.REMOVE_BACKGROUND,
}

UPSCALE_VARIANTS = {
    "conservative": OperationKind.UPSCALE_CONSERVATIVE,
    "creative": OperationKind.UPSCALE_CREATIVE,
}

THREE_D_PROVIDERS = (ProviderKind.TRIPO, ProviderKind.MESHY)


def envelope(status_code: int = 200, **fields: Any) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    body.update({k: v for k, v in fields.items() if v is not None})
    return JSONResponse(body, status_code=status_code)


def submitted(result: SubmitResult) -> JSONResponse:
    if result.job is not None:
        return envelope(202, id=result.job.id, status=result.job.status.value, job=result.job.public())
    return envelope(image=result.image, image_url=result.image_url, **result.metadata)


# ---- Error handling ----

@app.exception_handler(MediaGenError)
async def handle_mediagen_error(request: Request, exc: MediaGenError):
    if isinstance(exc, InternalError):
        logger.error(f"[API] internal error on {request.url.path}: {exc.message}")
        return JSONResponse({"success": False, "message": "Internal Server Error"}, status_code=500)

    body: Dict[str, Any] = {"success": False, "message": exc.message}
    if exc.provider:
        body["provider"] = exc.provider
    upstream_status = getattr(exc, "upstream_status", None)
    if upstream_status is not None:
        body["upstream_status"] = upstream_status
    if isinstance(exc, UpstreamError) and exc.body:
        body["detail"] = exc.body
    body.update(exc.details)
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
    return JSONResponse({"success": False, "message": message}, status_code=400)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"[API] unhandled error on {request.url.path}")
    return JSONResponse({"success": False, "message": "Internal Server Error"}, status_code=500)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.monotonic()
    jlog("http.request.start", method=request.method, path=request.url.path)
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        dur_ms = int((time.monotonic() - start) * 1000)
        jlog("http.request.finish", method=request.method, path=request.url.path,
             status=status, duration_ms=dur_ms)


# ---- Routes ----

@app.get("/health")
async def health(svc: MediaService = Depends(get_service)):
    return {"success": True, "job_store": svc.jobs.store.name}


@app.post("/generate")
async def generate(
    req: GenerateImageRequest,
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    if not req.prompt.strip():
        raise ValidationError("Prompt is required")

    request = GenerationRequest(
        prompt=req.prompt,
        negative_prompt=req.negative_prompt,
        width=req.width,
        height=req.height,
        provider=req.provider,
        server_url=req.server_url,
        api_key=req.api_key or bearer_token(authorization),
        seed=req.seed,
    )
    result = await svc.submit(request, owner=x_session_id)
    if result.provider == ProviderKind.COMFY:
        return envelope(provider=result.provider.value, prompt_id=result.prompt_id, client_id=result.client_id)
    return envelope(provider=result.provider.value, image_url=result.image_url)


async def _read_multipart(request: Request):
    form_fields: Dict[str, str] = {}
    files = {}
    form = await request.form()
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            files[key] = (
                value.filename or key,
                await value.read(),
                value.content_type or "application/octet-stream",
            )
        else:
            form_fields[key] = value
    return form_fields, files


async def _direct(
    request: Request,
    operation: OperationKind,
    authorization: Optional[str],
    owner: Optional[str],
    svc: MediaService,
) -> JSONResponse:
    api_key = bearer_token(authorization)
    if not api_key:
        raise ValidationError("Missing API Key")
    form_fields, files = await _read_multipart(request)
    gen_request = GenerationRequest(
        prompt=form_fields.get("prompt", ""),
        provider=ProviderKind.STABILITY,
        operation=operation,
        api_key=api_key,
        form=form_fields,
        files=files,
    )
    return submitted(await svc.submit(gen_request, owner=owner))


@app.post("/stability/upscale")
async def stability_upscale(
    request: Request,
    type: str = "conservative",
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    """conservative: trả ảnh ngay; creative: trả job id (202) để poll."""
    operation = UPSCALE_VARIANTS.get(type)
    if operation is None:
        raise ValidationError(f"Unknown upscale type: {type}")
    return await _direct(request, operation, authorization, x_session_id, svc)


@app.post("/stability/{operation}")
async def stability_operation(
    operation: str,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    op = STABILITY_OPERATIONS.get(operation)
    if op is None:
        raise ValidationError(f"Unknown Stability operation: {operation}")
    return await _direct(request, op, authorization, x_session_id, svc)


@app.post("/3d/{provider}")
async def submit_3d(
    provider: ProviderKind,
    body: ThreeDRequest,
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    if provider not in THREE_D_PROVIDERS:
        raise ValidationError(f"Provider {provider.value} does not generate 3D models")
    api_key = bearer_token(authorization)
    if not api_key:
        raise ValidationError("Missing API Key")

    request = GenerationRequest(
        prompt=body.prompt or "",
        image_url=body.image_url,
        provider=provider,
        operation=OperationKind(body.type),
        api_key=api_key,
        options=body.options,
    )
    return submitted(await svc.submit(request, owner=x_session_id))


@app.get("/jobs")
async def list_jobs(
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    jobs = await svc.list_jobs(owner=x_session_id)
    return envelope(jobs=[j.public() for j in jobs])


@app.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    job = await svc.get_job(job_id, owner=x_session_id)
    return envelope(job=job.public())


@app.post("/jobs/{job_id}/poll")
async def poll_job(
    job_id: str,
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    """Một bước poll: hỏi provider 1 lần rồi trả trạng thái mới của job."""
    job = await svc.poll_job(job_id, owner=x_session_id)
    return envelope(status=job.status.value, job=job.public())


@app.delete("/jobs/{job_id}")
async def evict_job(
    job_id: str,
    x_session_id: Optional[str] = Header(default=None),
    svc: MediaService = Depends(get_service),
):
    await svc.evict_job(job_id, owner=x_session_id)
    return envelope(id=job_id)
