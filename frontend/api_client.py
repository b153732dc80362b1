import base64
import time
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image

from config.settings import settings

BACKEND_URL = settings.BACKEND_URL


def _headers(session_id: Optional[str], api_key: Optional[str] = None) -> Dict[str, str]:
    headers = {}
    if session_id:
        headers["X-Session-Id"] = session_id
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def call_generate(
    prompt: str,
    provider: Optional[str],
    api_key: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Gọi POST /generate -> trả về envelope {success, message?, image_url | prompt_id}"""
    payload: Dict[str, Any] = {"prompt": prompt}
    if provider:
        payload["provider"] = provider
    if width and height:
        payload["width"], payload["height"] = width, height

    resp = requests.post(
        f"{BACKEND_URL}/generate",
        json=payload,
        headers=_headers(session_id, api_key),
        timeout=300,
    )
    return resp.json()


def call_generate_3d(
    provider: str,
    kind: str,
    api_key: str,
    prompt: Optional[str] = None,
    image_url: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    payload = {"type": kind, "prompt": prompt, "image_url": image_url}
    resp = requests.post(
        f"{BACKEND_URL}/3d/{provider}",
        json=payload,
        headers=_headers(session_id, api_key),
        timeout=60,
    )
    return resp.json()


def list_jobs(session_id: Optional[str]) -> list:
    resp = requests.get(f"{BACKEND_URL}/jobs", headers=_headers(session_id), timeout=10)
    return resp.json().get("jobs", [])


def poll_job(job_id: str, session_id: Optional[str]) -> Dict[str, Any]:
    resp = requests.post(f"{BACKEND_URL}/jobs/{job_id}/poll", headers=_headers(session_id), timeout=60)
    return resp.json()


def poll_until_done(
    job_id: str,
    session_id: Optional[str],
    timeout_sec: float = 120.0,
    poll_interval: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """Poll /jobs/{id}/poll cho đến khi SUCCEEDED/FAILED; None nếu hết giờ hoặc job không tồn tại."""
    interval = settings.POLL_INTERVAL if poll_interval is None else poll_interval
    start = time.time()
    while True:
        data = poll_job(job_id, session_id)
        if not data.get("success"):
            return None

        job = data.get("job") or {}
        if job.get("status") in ("SUCCEEDED", "FAILED"):
            return job

        if time.time() - start > timeout_sec:
            return None

        time.sleep(interval)


def load_image(image_url: str) -> Tuple[Image.Image, bytes]:
    """Data URL (base64) hoặc URL http -> (PIL Image, bytes gốc)"""
    if image_url.startswith("data:"):
        _, _, b64 = image_url.partition(",")
        content = base64.b64decode(b64)
    else:
        resp = requests.get(image_url, timeout=30)
        resp.raise_for_status()
        content = resp.content
    img = Image.open(BytesIO(content)).convert("RGB")
    return img, content
