# gateway/pipelines/extract.py
from __future__ import annotations

import asyncio
import logging
import re
import socket
from typing import Any, Dict, List, Mapping, Tuple

import httpx
from bs4 import BeautifulSoup

from ..clients.sources import fetch_page
from ..config import EXTRACT_MAX_BYTES, EXTRACT_MAX_REDIRECTS
from ..errors import BlockedAddress, UpstreamError
from ..models import ExtractedPage
from ..utils.normalize import squash, truncate
from ..utils.validation import coerce_limit, is_ip_literal, is_local_hostname, is_public_ip, require_http_url
from .base import Failure, FailureKind, PipelineResult, SimplePipeline, Success

log = logging.getLogger("gateway.pipelines.extract")

# page chrome that is never article text
_STRIP_TAGS = ("head", "script", "style", "noscript", "nav", "header", "footer", "template", "svg")
_DESCRIPTION_RE = re.compile(r"^description$", re.I)


def html_to_page(url: str, html: str, max_chars: int) -> ExtractedPage:
    soup = BeautifulSoup(html, "html.parser")
    title = squash(soup.title.get_text()) if soup.title else None
    meta = soup.find("meta", attrs={"name": _DESCRIPTION_RE})
    description = squash(meta.get("content")) if meta is not None and meta.get("content") else None
    for tag in soup(_STRIP_TAGS):
        # nested matches go with their ancestor
        if not tag.decomposed:
            tag.decompose()
    text = squash(soup.get_text(" ")) or ""
    content, cut = truncate(text, max_chars)
    return ExtractedPage(
        url=url,
        type="html",
        title=title,
        description=description,
        content=content or "",
        length=len(text),
        truncated=cut,
    )


def raw_to_page(url: str, body: str, kind: str, max_chars: int) -> ExtractedPage:
    content, cut = truncate(body, max_chars)
    return ExtractedPage(url=url, type=kind, content=content or "", length=len(body), truncated=cut)


def page_kind(content_type: str) -> str:
    ct = (content_type or "").lower()
    if "json" in ct:
        return "json"
    if "html" in ct or "xml" in ct or not ct:
        return "html"
    return "text"


async def resolve_host(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def ensure_public(url: httpx.URL) -> None:
    """Raise BlockedAddress unless every address `url`'s host resolves to is public."""
    host = url.host
    if not host or is_local_hostname(host):
        raise BlockedAddress(host or str(url))
    if is_ip_literal(host):
        addresses = [host]
    else:
        try:
            addresses = await resolve_host(host)
        except OSError as e:
            raise UpstreamError("web", f"cannot resolve {host}: {e}") from e
    if not addresses or not all(is_public_ip(a) for a in addresses):
        raise BlockedAddress(host)


class ExtractPipeline(SimplePipeline):
    name = "extract"
    items_key = "pages"
    example = "/api/extract?url=https://example.com&max=5000"

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        return {
            "url": require_http_url(params, "url", example=self.example, public_only=True),
            "max": coerce_limit(params, "max", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
        }

    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> Tuple[str, str]:
        return await fetch_page(
            http,
            query["url"],
            max_bytes=EXTRACT_MAX_BYTES,
            max_redirects=EXTRACT_MAX_REDIRECTS,
            check_url=ensure_public,
        )

    async def run(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        try:
            return await super().run(http, query)
        except BlockedAddress as e:
            log.warning("refused non-public address: %s", e.host)
            return Failure(FailureKind.BAD_REQUEST, "URL must point to a public host", {"example": self.example})

    def normalize(self, payload: Tuple[str, str], query: Dict[str, Any]) -> Success:
        body, content_type = payload
        kind = page_kind(content_type)
        if kind == "html":
            page = html_to_page(query["url"], body, query["max"])
        else:
            page = raw_to_page(query["url"], body, kind, query["max"])
        return self.success([page], flatten=True)
