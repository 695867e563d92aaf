"""
Shared test helpers.

Upstreams are faked with httpx.MockTransport; no test touches the network.
"""

import json
from pathlib import Path
from typing import Any, List, Optional, Tuple

import httpx
import pytest

from gateway.quota import MemoryQuotaStore

FIXTURES = Path(__file__).parent / "fixtures"


def load_text(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def load_json(name: str) -> Any:
    return json.loads(load_text(name))


class FakeUpstreams:
    """Canned responses keyed by (host, path). A path ending in '*' matches by prefix."""

    def __init__(self):
        self.routes: List[Tuple[str, str, dict]] = []
        self.calls: List[httpx.Request] = []

    def add(
        self,
        host: str,
        path: str,
        *,
        json_body: Any = None,
        text: Optional[str] = None,
        status: int = 200,
        content_type: Optional[str] = None,
        error: bool = False,
        headers: Optional[dict] = None,
    ) -> "FakeUpstreams":
        self.routes.append((host, path, {
            "json": json_body,
            "text": text,
            "status": status,
            "content_type": content_type,
            "error": error,
            "headers": headers or {},
        }))
        return self

    def _match(self, request: httpx.Request) -> Optional[dict]:
        for host, path, spec in self.routes:
            if request.url.host != host:
                continue
            if path.endswith("*") and request.url.path.startswith(path[:-1]):
                return spec
            if request.url.path == path:
                return spec
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        spec = self._match(request)
        if spec is None:
            return httpx.Response(404, json={"error": "no route"})
        if spec["error"]:
            raise httpx.ConnectError("connection refused", request=request)
        if spec["text"] is not None:
            headers = {"content-type": spec["content_type"] or "text/plain", **spec["headers"]}
            return httpx.Response(spec["status"], text=spec["text"], headers=headers)
        return httpx.Response(spec["status"], json=spec["json"], headers=spec["headers"])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def paths(self, host: Optional[str] = None) -> List[str]:
        return [r.url.path for r in self.calls if host is None or r.url.host == host]


@pytest.fixture
def upstreams():
    return FakeUpstreams()


@pytest.fixture
def memory_store():
    return MemoryQuotaStore()


PUBLIC_ADDRESS = "93.184.216.34"


@pytest.fixture(autouse=True)
def offline_dns(monkeypatch):
    """Page extraction resolves hosts before fetching; answer with a public address instead of real DNS."""
    resolved: List[str] = []

    async def resolve(host: str) -> List[str]:
        resolved.append(host)
        return [PUBLIC_ADDRESS]

    monkeypatch.setattr("gateway.pipelines.extract.resolve_host", resolve)
    return resolved
