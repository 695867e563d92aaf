"""
Query-parameter coercion for pipelines
======================================

Pipelines declare their inputs with these helpers:

    require_str(params, "q", example="/api/pubmed?q=CRISPR")  -> str
    optional_str(params, "cat")                               -> str | None
    coerce_limit(params, "limit", default=5, cap=10)          -> int in [1, cap]
    coerce_choice(params, "sort", ("date", "relevance"), "date") -> str
    require_http_url(params, "url", public_only=True)         -> str
    is_public_ip("10.0.0.1")                                  -> False

The require and coerce helpers raise ParameterError. None of them touch the network.
"""

from __future__ import annotations

import ipaddress
from typing import Mapping, Optional, Sequence
from urllib.parse import urlparse

from ..errors import ParameterError


def optional_str(params: Mapping[str, str], name: str) -> Optional[str]:
    v = params.get(name)
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def require_str(params: Mapping[str, str], name: str, *, example: Optional[str] = None) -> str:
    v = optional_str(params, name)
    if v is None:
        raise ParameterError(f"Missing ?{name}= parameter", example=example)
    return v


def coerce_limit(
    params: Mapping[str, str],
    name: str,
    *,
    default: int,
    cap: int,
    floor: int = 1,
    example: Optional[str] = None,
) -> int:
    raw = optional_str(params, name)
    if raw is None:
        return min(default, cap)
    try:
        value = int(raw)
    except ValueError:
        raise ParameterError(f"Invalid {name}: expected an integer, got {raw!r}", example=example) from None
    return max(floor, min(value, cap))


def coerce_choice(
    params: Mapping[str, str],
    name: str,
    choices: Sequence[str],
    default: str,
    *,
    example: Optional[str] = None,
) -> str:
    raw = optional_str(params, name)
    if raw is None:
        return default
    if raw not in choices:
        raise ParameterError(f"Invalid {name}: {raw!r} (expected one of: {', '.join(choices)})", example=example)
    return raw


_LOCAL_NAMES = ("localhost", "localhost.localdomain", "ip6-localhost")


def is_public_ip(value: str) -> bool:
    try:
        addr = ipaddress.ip_address(value.split("%", 1)[0])
    except ValueError:
        return False
    if addr.version == 6 and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
        or not addr.is_global
    )


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    return True


def is_local_hostname(host: str) -> bool:
    host = host.lower().rstrip(".")
    return host in _LOCAL_NAMES or host.endswith(".localhost")


def require_http_url(
    params: Mapping[str, str],
    name: str,
    *,
    example: Optional[str] = None,
    public_only: bool = False,
) -> str:
    v = require_str(params, name, example=example)
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ParameterError("Invalid URL", example=example)
    if public_only:
        host = parsed.hostname or ""
        if parsed.username or parsed.password:
            raise ParameterError("Invalid URL: credentials in URL are not allowed", example=example)
        if not host or is_local_hostname(host) or (is_ip_literal(host) and not is_public_ip(host)):
            raise ParameterError("URL must point to a public host", example=example)
    return v
