# gateway/errors.py
from __future__ import annotations

from typing import Optional, Sequence


class ParameterError(ValueError):
    """A required query parameter is missing or cannot be coerced."""

    def __init__(self, message: str, example: Optional[str] = None, examples: Sequence[str] = ()):
        super().__init__(message)
        self.message = message
        self.example = example
        self.examples = list(examples)


class UpstreamError(Exception):
    """Transport failure, non-2xx status or undecodable body from an upstream."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class MalformedPayload(UpstreamError):
    """Upstream answered 2xx but the body does not have the expected shape."""


class QuotaStoreError(Exception):
    """The quota store could not be read or written."""


class BlockedAddress(Exception):
    """A caller-supplied URL (or a redirect it led to) resolves to a non-public address."""

    def __init__(self, host: str):
        super().__init__(f"{host} does not resolve to a public address")
        self.host = host
