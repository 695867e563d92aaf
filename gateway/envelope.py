# gateway/envelope.py
"""
Maps pipeline outcomes, quota denials and faults to HTTP responses.

This is the only place that knows status codes; pipelines return Success or
Failure and never raise HTTP errors themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from fastapi.responses import JSONResponse

from .config import PRO_UPGRADE_HINT, UPGRADE_HINT
from .errors import ParameterError
from .identity import CallerIdentity
from .pipelines.base import Failure, FailureKind, Success
from .quota import QuotaDecision


class Status(str, Enum):
    OK = "OK"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self]


HTTP_STATUS = {
    Status.OK: 200,
    Status.BAD_REQUEST: 400,
    Status.NOT_FOUND: 404,
    Status.RATE_LIMITED: 429,
    Status.UPSTREAM_UNAVAILABLE: 502,
    Status.INTERNAL_ERROR: 500,
}

_FAILURE_STATUS = {
    FailureKind.BAD_REQUEST: Status.BAD_REQUEST,
    FailureKind.NOT_FOUND: Status.NOT_FOUND,
    FailureKind.UPSTREAM_UNAVAILABLE: Status.UPSTREAM_UNAVAILABLE,
}

INTERNAL_MESSAGE = "The request could not be completed"


@dataclass
class Envelope:
    status: Status
    body: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status.http_status, content=self.body)


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if v is not None}


def from_success(result: Success) -> Envelope:
    body: Dict[str, Any] = dict(result.meta)
    items = [item.model_dump() for item in result.items]
    if result.flatten and items:
        body.update(items[0])
    else:
        body[result.items_key] = items
    body["count"] = len(items)
    return Envelope(Status.OK, body)


def from_failure(result: Failure) -> Envelope:
    body = {"error": result.detail}
    body.update(result.extra)
    return Envelope(_FAILURE_STATUS[result.kind], _compact(body))


def from_parameter_error(e: ParameterError) -> Envelope:
    body = _compact({"error": e.message, "example": e.example})
    if e.examples:
        body["examples"] = e.examples
    return Envelope(Status.BAD_REQUEST, body)


def from_denial(decision: QuotaDecision, identity: CallerIdentity) -> Envelope:
    return Envelope(Status.RATE_LIMITED, {
        "error": "Daily limit reached",
        "usage": decision.usage,
        "limit": decision.limit,
        "upgrade": PRO_UPGRADE_HINT if identity.tier_elevated else UPGRADE_HINT,
    })


def internal_error() -> Envelope:
    return Envelope(Status.INTERNAL_ERROR, {"error": "Internal error", "message": INTERNAL_MESSAGE})


def unknown_endpoint(endpoints: List[str]) -> Envelope:
    return Envelope(Status.NOT_FOUND, {"error": "Unknown endpoint", "endpoints": endpoints})
