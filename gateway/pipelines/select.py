# gateway/pipelines/select.py
"""
Ordered-candidate evaluation.

Fallback chains ("first upstream that yields something usable") and entity
resolution ("best-scoring candidate, earliest wins ties") are the same loop
with a different exit rule, so both live here.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..errors import UpstreamError

log = logging.getLogger("gateway.pipelines.select")

C = TypeVar("C")
R = TypeVar("R")


def pick_first(candidates: Iterable[C], accept: Callable[[C], bool]) -> Optional[C]:
    for c in candidates:
        if accept(c):
            return c
    return None


def ranked(candidates: Sequence[C], score: Callable[[C], float]) -> List[Tuple[float, int, C]]:
    """(score, original position, candidate), best first; stable on ties."""
    rows = [(score(c), i, c) for i, c in enumerate(candidates)]
    rows.sort(key=lambda r: (-r[0], r[1]))
    return rows


def best_match(candidates: Sequence[C], score: Callable[[C], float]) -> Optional[C]:
    rows = ranked(candidates, score)
    return rows[0][2] if rows else None


async def first_success(
    candidates: Iterable[C],
    attempt: Callable[[C], Awaitable[R]],
    accept: Callable[[R], bool],
) -> Tuple[Optional[C], Optional[R], List[Tuple[C, str]]]:
    """
    Evaluate candidates in order until one produces an accepted result.

    UpstreamError from a candidate is a soft failure: it is recorded and the
    next candidate runs. Returns (winner, result, soft_failures); winner and
    result are None when the candidates are exhausted.
    """
    failures: List[Tuple[C, str]] = []
    for c in candidates:
        try:
            result = await attempt(c)
        except UpstreamError as e:
            log.info("candidate %s failed: %s", c, e)
            failures.append((c, str(e)))
            continue
        if accept(result):
            return c, result, failures
        failures.append((c, "no usable data"))
    return None, None, failures
