# gateway/pipelines/base.py
"""
Source pipelines: fetch from one or more upstreams, normalize into one schema,
return a typed result.

Three shapes share the `Pipeline` contract (`parse` params, then `run`):

- SimplePipeline                one upstream, direct normalize
- FallbackChainPipeline         ordered upstreams, first non-empty result wins
- ResolveThenAggregatePipeline  pick one canonical entity by score, fetch its
                                dependent records, dedupe, denormalize names

`run` never raises for upstream trouble; it returns Failure. Anything other
than UpstreamError is a bug and propagates to the app's error handler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Mapping, Optional,
    Sequence, TypeVar, Union,
)

import httpx
from pydantic import BaseModel

from ..config import PipelineCaps
from ..errors import UpstreamError
from .select import best_match, first_success

log = logging.getLogger("gateway.pipelines")

T = TypeVar("T")


# ============================================================================
# Result types
# ============================================================================
class FailureKind(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


@dataclass
class Success:
    items: List[BaseModel]
    meta: Dict[str, Any] = field(default_factory=dict)
    items_key: str = "items"
    flatten: bool = False  # single-item capabilities merge the item into the envelope


@dataclass
class Failure:
    kind: FailureKind
    detail: str
    extra: Dict[str, Any] = field(default_factory=dict)


PipelineResult = Union[Success, Failure]


# ============================================================================
# Helpers
# ============================================================================
async def gather_best_effort(aws: Iterable[Awaitable[Optional[T]]], *, label: str = "batch") -> List[T]:
    """Run concurrently; an item whose upstream fails (or yields None) is omitted."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    out: List[T] = []
    dropped = 0
    for r in results:
        if isinstance(r, UpstreamError):
            dropped += 1
            continue
        if isinstance(r, BaseException):
            raise r
        if r is not None:
            out.append(r)
    if dropped:
        log.info("%s: %d item(s) dropped after upstream failures", label, dropped)
    return out


def dedupe_first(records: Iterable[T], key: Callable[[T], Optional[Hashable]], limit: int) -> List[T]:
    """Keep the first record per key in input order; stop at `limit` unique records."""
    out: List[T] = []
    if limit <= 0:
        return out
    seen = set()
    for r in records:
        k = key(r)
        if k is None or k in seen:
            continue
        seen.add(k)
        out.append(r)
        if len(out) >= limit:
            break
    return out


# ============================================================================
# Pipeline contract
# ============================================================================
class Pipeline:
    name: str = ""
    items_key: str = "items"
    example: str = ""

    def __init__(self, caps: PipelineCaps):
        self.caps = caps

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        """Coerce raw query params; raises ParameterError."""
        raise NotImplementedError

    async def execute(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        raise NotImplementedError

    async def run(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        try:
            return await self.execute(http, query)
        except UpstreamError as e:
            log.warning("%s: upstream failure: %s", self.name, e)
            return Failure(FailureKind.UPSTREAM_UNAVAILABLE, f"{e.source} is unavailable", {"message": e.message})

    def success(self, items: Sequence[BaseModel], *, flatten: bool = False, **meta: Any) -> Success:
        return Success(items=list(items), meta=meta, items_key=self.items_key, flatten=flatten)


class SimplePipeline(Pipeline):
    async def fetch(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def normalize(self, payload: Any, query: Dict[str, Any]) -> Success:
        raise NotImplementedError

    async def execute(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        payload = await self.fetch(http, query)
        return self.normalize(payload, query)


# ----------------------------------------------------------------------------
# Fallback chain
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class Upstream:
    name: str
    fetch: Callable[[httpx.AsyncClient, Dict[str, Any]], Awaitable[Any]]
    normalize: Callable[[Any, Dict[str, Any]], List[BaseModel]]

    async def load(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> List[BaseModel]:
        payload = await self.fetch(http, query)
        return self.normalize(payload, query)

    def __str__(self) -> str:
        return self.name


class FallbackChainPipeline(Pipeline):
    def chain(self, query: Dict[str, Any]) -> Sequence[Upstream]:
        raise NotImplementedError

    def meta(self, query: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def flatten(self, query: Dict[str, Any]) -> bool:
        return False

    def exhausted(self, query: Dict[str, Any], answered_empty: bool) -> Failure:
        return Failure(FailureKind.UPSTREAM_UNAVAILABLE, f"All {self.name} sources are unavailable")

    async def execute(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        upstreams = list(self.chain(query))
        winner, items, failures = await first_success(
            upstreams,
            lambda u: u.load(http, query),
            accept=lambda got: bool(got),
        )
        if winner is None or items is None:
            answered_empty = any(reason == "no usable data" for _, reason in failures)
            log.warning("%s: chain exhausted (%s)", self.name, "; ".join(f"{u}: {r}" for u, r in failures))
            return self.exhausted(query, answered_empty)
        return self.success(items, flatten=self.flatten(query), **self.meta(query), source=winner.name)


# ----------------------------------------------------------------------------
# Resolve then aggregate
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class ResolutionCandidate:
    entity: Dict[str, Any]
    score: int
    matched_synonym: bool = False


class ResolveThenAggregatePipeline(Pipeline):
    overfetch_factor: int = 3

    async def search(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def score(self, entity: Dict[str, Any], query: Dict[str, Any]) -> ResolutionCandidate:
        raise NotImplementedError

    def not_found(self, query: Dict[str, Any]) -> Failure:
        return Failure(FailureKind.NOT_FOUND, "No matching entity")

    async def fetch_dependents(
        self, http: httpx.AsyncClient, chosen: ResolutionCandidate, query: Dict[str, Any], fetch_limit: int
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def dedup_key(self, record: Dict[str, Any]) -> Optional[Hashable]:
        raise NotImplementedError

    async def denormalize(self, http: httpx.AsyncClient, records: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
        return {}

    def build(
        self,
        chosen: ResolutionCandidate,
        records: List[Dict[str, Any]],
        names: Dict[str, Optional[str]],
        query: Dict[str, Any],
    ) -> Success:
        raise NotImplementedError

    def resolve(self, entities: Sequence[Dict[str, Any]], query: Dict[str, Any]) -> Optional[ResolutionCandidate]:
        candidates = [self.score(e, query) for e in entities]
        return best_match(candidates, lambda c: c.score)

    async def execute(self, http: httpx.AsyncClient, query: Dict[str, Any]) -> PipelineResult:
        entities = await self.search(http, query)
        chosen = self.resolve(entities, query)
        if chosen is None:
            return self.not_found(query)

        limit = int(query["limit"])
        records = await self.fetch_dependents(http, chosen, query, limit * max(1, self.overfetch_factor))
        unique = dedupe_first(records, self.dedup_key, limit)

        names: Dict[str, Optional[str]] = {}
        if unique:
            try:
                names = await self.denormalize(http, unique)
            except UpstreamError as e:
                log.warning("%s: name lookup failed, names left empty: %s", self.name, e)
        return self.build(chosen, unique, names, query)
