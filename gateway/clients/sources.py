# gateway/clients/sources.py
"""
Upstream registry and the fetch primitives the pipelines use.

Each upstream is a `Source` with an env-overridable base URL and optional
credentials. Credentials are read from the environment at request time and
travel either as a header (`auth_scheme`) or as a query parameter
(`auth_param`, e.g. NCBI's `api_key`). Sources work without them, at the
upstream's anonymous rate limits.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

import httpx

from ..config import HTTP_TIMEOUT_SECONDS, OUTBOUND_USER_AGENT
from ..errors import UpstreamError


@dataclass(frozen=True)
class Source:
    name: str
    base_url: str
    auth_env: Optional[str] = None     # env var holding the credential
    auth_scheme: Optional[str] = None  # "Bearer", or a raw header name such as "x-cg-demo-api-key"
    auth_param: Optional[str] = None   # credential as a query parameter instead of a header
    accept: str = "application/json"
    extra_headers: Dict[str, str] = field(default_factory=dict)


def _base(name: str, default: str) -> str:
    return os.getenv(f"{name.upper()}_BASE_URL", default).rstrip("/")


def _join_url(base: str, path: str) -> str:
    # absolute paths pass through (caller-supplied URLs)
    if not base or path.startswith(("http://", "https://")):
        return path
    return f"{base}/{path.lstrip('/')}"


def _credential(src: Source) -> Optional[str]:
    if not src.auth_env:
        return None
    return os.getenv(src.auth_env) or None


def _headers(src: Source) -> Dict[str, str]:
    headers = {"Accept": src.accept, "User-Agent": OUTBOUND_USER_AGENT, **src.extra_headers}
    token = _credential(src)
    if token and src.auth_scheme and not src.auth_param:
        if src.auth_scheme.lower() == "bearer":
            headers["Authorization"] = f"Bearer {token}"
        else:
            headers[src.auth_scheme] = token
    return headers


def _params(src: Source, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    out = dict(params or {})
    token = _credential(src)
    if token and src.auth_param:
        out[src.auth_param] = token
    return out


SOURCES: Dict[str, Source] = {
    "hn": Source("hn", _base("hn", "https://hacker-news.firebaseio.com/v0")),
    "ncbi": Source(
        "ncbi",
        _base("ncbi", "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"),
        auth_env="NCBI_API_KEY",
        auth_param="api_key",
    ),
    "arxiv": Source("arxiv", _base("arxiv", "https://export.arxiv.org/api"), accept="application/atom+xml"),
    "coingecko": Source(
        "coingecko",
        _base("coingecko", "https://api.coingecko.com/api/v3"),
        auth_env="COINGECKO_API_KEY",
        auth_scheme=os.getenv("COINGECKO_AUTH_HEADER", "x-cg-demo-api-key"),
    ),
    "coincap": Source(
        "coincap",
        _base("coincap", "https://api.coincap.io/v2"),
        auth_env="COINCAP_API_KEY",
        auth_scheme="Bearer",
    ),
    "github": Source(
        "github",
        _base("github", "https://api.github.com"),
        auth_env="GITHUB_TOKEN",
        auth_scheme="Bearer",
        accept="application/vnd.github+json",
        extra_headers={"X-GitHub-Api-Version": "2022-11-28"},
    ),
    "chembl": Source("chembl", _base("chembl", "https://www.ebi.ac.uk/chembl/api/data")),
    # caller-supplied absolute URLs (page extraction)
    "web": Source("web", "", accept="text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8"),
}


def get_source(name: str) -> Source:
    return SOURCES[name]


def iter_sources() -> Iterable[Source]:
    return SOURCES.values()


def make_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Shared client for the app lifetime. No retries."""
    kwargs.setdefault("timeout", httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=5.0))
    kwargs.setdefault("follow_redirects", True)
    return httpx.AsyncClient(**kwargs)


# ------------------------------------------------------------------------------------
# Fetch
# ------------------------------------------------------------------------------------
def _error_reason(r: httpx.Response) -> Optional[str]:
    """Upstream's own explanation from a JSON error body (GitHub rate limits come back as 403)."""
    if "json" not in r.headers.get("content-type", ""):
        return None
    try:
        body = r.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    reason = body.get("message") or body.get("error")
    return reason[:200] if isinstance(reason, str) and reason else None


async def _get(
    http: httpx.AsyncClient,
    source_name: str,
    path: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.Response:
    src = get_source(source_name)
    url = _join_url(src.base_url, path)
    hdrs = _headers(src)
    if headers:
        hdrs.update(headers)
    try:
        r = await http.get(url, params=_params(src, params), headers=hdrs)
    except httpx.HTTPError as e:
        raise UpstreamError(source_name, f"GET {url} failed: {e.__class__.__name__}: {e}") from e
    if r.status_code >= 400:
        reason = _error_reason(r)
        suffix = f": {reason}" if reason else ""
        raise UpstreamError(source_name, f"GET {url} -> {r.status_code}{suffix}")
    return r


async def fetch_source_json(
    http: httpx.AsyncClient,
    source_name: str,
    path: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Any:
    """
    GET against a named source, returning decoded JSON.
    Raises UpstreamError for transport failures, non-2xx and non-JSON bodies.
    """
    r = await _get(http, source_name, path, params=params, headers=headers)
    try:
        return r.json()
    except ValueError as e:
        raise UpstreamError(source_name, f"undecodable JSON body: {e}") from e


async def fetch_source_text(
    http: httpx.AsyncClient,
    source_name: str,
    path: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Tuple[str, str]:
    """GET against a named source, returning (body text, content type)."""
    r = await _get(http, source_name, path, params=params, headers=headers)
    return r.text, r.headers.get("content-type", "")


async def _read_capped(r: httpx.Response, max_bytes: int) -> bytes:
    buf = bytearray()
    async for chunk in r.aiter_bytes():
        buf.extend(chunk)
        if len(buf) >= max_bytes:
            break
    return bytes(buf[:max_bytes])


def _decode(body: bytes, charset: Optional[str]) -> str:
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


async def fetch_page(
    http: httpx.AsyncClient,
    url: str,
    *,
    max_bytes: int,
    max_redirects: int,
    check_url: Callable[[httpx.URL], Awaitable[None]],
) -> Tuple[str, str]:
    """
    GET a caller-supplied URL through the `web` source, returning (text, content type).

    Redirects are followed here rather than by the client so `check_url` sees
    every hop before it is requested. The body is read up to `max_bytes`; the
    rest is dropped unread.
    """
    hdrs = _headers(get_source("web"))
    target = httpx.URL(url)
    for _ in range(max_redirects + 1):
        await check_url(target)
        try:
            async with http.stream("GET", target, headers=hdrs, follow_redirects=False) as r:
                if r.is_redirect:
                    target = r.url.join(r.headers["location"])
                    continue
                if r.status_code >= 400:
                    raise UpstreamError("web", f"GET {target} -> {r.status_code}")
                body = await _read_capped(r, max_bytes)
                return _decode(body, r.charset_encoding), r.headers.get("content-type", "")
        except httpx.HTTPError as e:
            raise UpstreamError("web", f"GET {target} failed: {e.__class__.__name__}: {e}") from e
    raise UpstreamError("web", f"more than {max_redirects} redirects from {url}")
