import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx

from config.settings import settings


def gen_job_id() -> str:
    return str(uuid.uuid4())


def get_timestamp_ms() -> int:
    return int(time.time() * 1000)


def snap_down(value: Optional[int], multiple: int, default: int) -> int:
    """Round ``value`` down to a multiple of ``multiple``; ``default`` when unset."""
    if not value:
        return default
    return (value // multiple) * multiple


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Lấy API key từ header ``Authorization: Bearer <key>``."""
    if not authorization:
        return None
    token = authorization.strip()
    scheme, _, value = token.partition(" ")
    if scheme.lower() == "bearer":
        token = value.strip()
    return token or None


def auth_headers(api_key: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Header ``Authorization: Bearer <key>`` cho các API remote."""
    return {"Authorization": f"Bearer {api_key}", **(extra or {})}


def png_data_url(b64: str) -> str:
    return f"data:image/png;base64,{b64}"


def error_text(response: httpx.Response, *keys: str) -> Optional[str]:
    """
    Đọc message lỗi từ body JSON của provider theo đường dẫn ``keys``
    (vd: "error", "message"). Trả về None nếu body không phải JSON
    hoặc không có field đó.
    """
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return None
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data if isinstance(data, str) and data else None


@asynccontextmanager
async def http_client(client: Optional[httpx.AsyncClient] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Dùng client được inject (test, connection pool) hoặc mở client mới cho 1 lần gọi."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT) as c:
        yield c
