"""
Normalization helpers shared by the pipeline mappers.

- truncate(): cut a text field at an exact cap and report whether it was cut.
- squash(): collapse runs of whitespace (XML/HTML text nodes).
- to_float()/to_int(): lenient numeric coercion; upstreams mix strings and numbers.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

_WS_RE = re.compile(r"\s+")


def squash(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    out = _WS_RE.sub(" ", text).strip()
    return out or None


def truncate(text: Optional[str], cap: int) -> Tuple[Optional[str], bool]:
    """Return (text[:cap], truncated). A cap <= 0 disables truncation."""
    if text is None or cap <= 0 or len(text) <= cap:
        return text, False
    return text[:cap], True


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> Optional[int]:
    f = to_float(value)
    if f is None:
        return None
    return int(f)


def iso_from_epoch(seconds: Any) -> Optional[str]:
    s = to_float(seconds)
    if s is None:
        return None
    return datetime.fromtimestamp(s, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
