# gateway/config.py
"""
Runtime configuration for the research gateway.

Everything is read from the environment once at import time. Integers are
parsed leniently: a malformed value falls back to the default instead of
failing the import.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, FrozenSet


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _csv_env(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


# ----------------------------------------------------------------------------
# App metadata
# ----------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
APP_TITLE = os.getenv("APP_TITLE", "Research Gateway")
APP_VERSION = os.getenv("APP_VERSION", "2.1")
CORS_ALLOW_ORIGINS = [o for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o]

# ----------------------------------------------------------------------------
# Quota
# ----------------------------------------------------------------------------
REDIS_URL = os.getenv("REDIS_URL", "")
REDIS_SOCKET_TIMEOUT = _float_env("REDIS_SOCKET_TIMEOUT", 2.0)

FREE_DAILY_LIMIT = _int_env("FREE_DAILY_LIMIT", 20)
PRO_DAILY_LIMIT = _int_env("PRO_DAILY_LIMIT", 1000)
QUOTA_TTL_SECONDS = _int_env("QUOTA_TTL_SECONDS", 24 * 3600)

# Credentials treated as elevated without a store lookup (ops override).
PRO_API_KEYS = _csv_env("PRO_API_KEYS")

# Header carrying the real client address, set by the edge network in front of us.
CLIENT_IP_HEADER = os.getenv("CLIENT_IP_HEADER", "CF-Connecting-IP")

UPGRADE_HINT = os.getenv("UPGRADE_HINT", "Upgrade to Pro for 1000 requests/day")
PRO_UPGRADE_HINT = os.getenv("PRO_UPGRADE_HINT", "Contact support to increase limits")

# ----------------------------------------------------------------------------
# Outbound HTTP
# ----------------------------------------------------------------------------
HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)
OUTBOUND_USER_AGENT = os.getenv("OUTBOUND_USER_AGENT", "ResearchGateway/2.1")

# Page extraction fetches caller-supplied URLs; the body is read up to this many bytes.
EXTRACT_MAX_BYTES = _int_env("EXTRACT_MAX_BYTES", 2_000_000)
EXTRACT_MAX_REDIRECTS = _int_env("EXTRACT_MAX_REDIRECTS", 5)


# ----------------------------------------------------------------------------
# Per-pipeline caps
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class PipelineCaps:
    default_limit: int
    max_limit: int
    text_max: int = 0


def _caps(name: str, default_limit: int, max_limit: int, text_max: int = 0) -> PipelineCaps:
    prefix = name.upper()
    return PipelineCaps(
        default_limit=_int_env(f"{prefix}_DEFAULT_LIMIT", default_limit),
        max_limit=_int_env(f"{prefix}_MAX_LIMIT", max_limit),
        text_max=_int_env(f"{prefix}_TEXT_MAX", text_max),
    )


CAPS: Dict[str, PipelineCaps] = {
    "hn": _caps("hn", 15, 30),
    "pubmed": _caps("pubmed", 5, 10, 500),
    "arxiv": _caps("arxiv", 5, 10, 500),
    "crypto": _caps("crypto", 10, 25),
    "github": _caps("github", 10, 25, 200),
    "extract": _caps("extract", 5000, 10000),
    "drugs": _caps("drugs", 5, 10),
}

HN_SCAN_WINDOW = _int_env("HN_SCAN_WINDOW", 40)
DRUGS_OVERFETCH_FACTOR = _int_env("DRUGS_OVERFETCH_FACTOR", 3)
