# gateway/identity.py
"""
Caller identity and tier.

Standard callers are keyed by client address; elevated callers by their
credential. The client address comes from a header set by the edge network
(CLIENT_IP_HEADER). That header is only trustworthy behind such an edge: when
the service is exposed directly, callers can spoof it, and a different source
of identity (TLS client identity, authenticated session) must be substituted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Any, Optional

from fastapi import Request

from .errors import QuotaStoreError

log = logging.getLogger("gateway.identity")


@dataclass(frozen=True)
class CallerIdentity:
    key: Optional[str]
    tier_elevated: bool
    rate_key: str

    @property
    def plan(self) -> str:
        return "pro" if self.tier_elevated else "free"


def pro_marker_key(credential: str) -> str:
    return f"pro:{credential}"


def extract_credential(request: Request) -> Optional[str]:
    key = request.query_params.get("key")
    if key and key.strip():
        return key.strip()
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        return token or None
    return None


def client_address(request: Request, header: str) -> str:
    value = request.headers.get(header) if header else None
    if value:
        # X-Forwarded-For style lists: the left-most entry is the client
        return value.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def is_elevated(credential: Optional[str], store: Any, pro_keys: AbstractSet[str]) -> bool:
    if not credential:
        return False
    if credential in pro_keys:
        return True
    try:
        return bool(await store.get(pro_marker_key(credential)))
    except QuotaStoreError as e:
        log.warning("pro lookup failed, treating caller as standard: %s", e)
        return False


def build_identity(credential: Optional[str], address: str, elevated: bool) -> CallerIdentity:
    rate_key = f"key:{credential}" if elevated and credential else address
    return CallerIdentity(key=credential, tier_elevated=elevated, rate_key=rate_key)


async def resolve_identity(
    request: Request,
    store: Any,
    *,
    pro_keys: AbstractSet[str] = frozenset(),
    ip_header: str = "CF-Connecting-IP",
) -> CallerIdentity:
    credential = extract_credential(request)
    elevated = await is_elevated(credential, store, pro_keys)
    return build_identity(credential, client_address(request, ip_header), elevated)
