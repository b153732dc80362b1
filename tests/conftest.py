import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from mediagen.app import app, get_service
from mediagen.jobs import MemoryJobStore
from mediagen.service import build_service


class FakeProvider:
    """
    httpx.MockTransport handler: trả response đã đăng ký theo (method, path).
    Nhiều response cho cùng 1 route được trả lần lượt, response cuối được lặp lại.
    """

    def __init__(self) -> None:
        self.calls: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Optional[Any], Optional[str]]]] = {}

    def on(self, method: str, path: str, status: int = 200, json: Any = None, text: Optional[str] = None):
        self.routes.setdefault((method, path), []).append((status, json, text))
        return self

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [c for c in self.calls if c.url.path == path]

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.calls[index].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path)
        queue = self.routes.get(key)
        if not queue:
            raise AssertionError(f"unexpected provider call: {key}")
        status, body, text = queue.pop(0) if len(queue) > 1 else queue[0]
        if body is not None:
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=text or "")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def http(provider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(provider))


@pytest.fixture
def service(http):
    return build_service(client=http, store=MemoryJobStore())


@pytest.fixture
def api(service):
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
    app.dependency_overrides.clear()
