# gateway/quota.py
"""
Daily quota: store backends and the admission gate.

The gate reads the current count, decides, and (on dispatch) writes count+1
with a fresh 24h expiry. Read and write are two independent store calls, so
concurrent requests for one identity can both pass the final slot. Overshoot is
bounded by the number of requests in flight when the limit is crossed; an
atomic INCR-and-check is the upgrade path if exact accounting is ever required.

If the store cannot be reached the gate fails open: the request is admitted
and usage is reported as 0. A request admitted on a failed read is not
written back, so the stored count is never replaced by 1.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import QuotaStoreError
from .identity import CallerIdentity

log = logging.getLogger("gateway.quota")


class QuotaStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


# ----------------------------------------------------------------------------
# Backends
# ----------------------------------------------------------------------------
class RedisQuotaStore:
    """Redis-backed store. Keys expire server-side."""

    kind = "redis"

    def __init__(self, url: str, *, socket_timeout: float = 2.0):
        self.url = url
        self._redis = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise QuotaStoreError(f"GET {key}: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise QuotaStoreError(f"SET {key}: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryQuotaStore:
    """
    Per-process TTL store for tests and single-worker development.

    Day keys are never read again once their day is over, so expired entries
    are swept from `set` at most once per `sweep_interval` seconds. Live
    entries are never evicted; dropping one would reset a caller's count.
    """

    kind = "memory"

    def __init__(self, clock: Callable[[], float] = time.time, *, sweep_interval: float = 300.0):
        self._store: Dict[str, Tuple[float, str]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self.sweep_interval = sweep_interval
        self._next_sweep = 0.0

    def size(self) -> int:
        return len(self._store)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (exp, _) in self._store.items() if now >= exp]
        for k in expired:
            self._store.pop(k, None)
        if expired:
            log.debug("memory quota store: dropped %d expired keys", len(expired))
        self._next_sweep = now + self.sweep_interval

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            exp, val = item
            if self._clock() >= exp:
                self._store.pop(key, None)
                return None
            return val

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._store[key] = (now + ttl_seconds, value)

    async def close(self) -> None:
        return None


# ----------------------------------------------------------------------------
# Gate
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class QuotaDecision:
    admitted: bool
    usage: int
    limit: int
    # day key fixed at admission; consumption lands on the same day
    key: Optional[str] = None
    # False when the store read failed; such a decision is never written back
    counted: bool = True

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.usage)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def usage_key(rate_key: str, day: str) -> str:
    return f"usage:{rate_key}:{day}"


class QuotaGate:
    def __init__(
        self,
        store: QuotaStore,
        *,
        standard_limit: int,
        elevated_limit: int,
        ttl_seconds: int = 24 * 3600,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.store = store
        self.standard_limit = standard_limit
        self.elevated_limit = elevated_limit
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def limit_for(self, identity: CallerIdentity) -> int:
        return self.elevated_limit if identity.tier_elevated else self.standard_limit

    def _key(self, identity: CallerIdentity) -> str:
        day = self._clock().astimezone(timezone.utc).date().isoformat()
        return usage_key(identity.rate_key, day)

    async def _read(self, key: str, rate_key: str) -> Tuple[int, bool]:
        """(usage, counted). `counted` is False only when the store read failed."""
        try:
            stored = await self.store.get(key)
        except QuotaStoreError as e:
            log.warning("quota store unavailable, reporting zero usage: %s", e)
            return 0, False
        try:
            return (max(0, int(stored)) if stored is not None else 0), True
        except ValueError:
            log.warning("ignoring corrupt quota record for %s: %r", rate_key, stored)
            return 0, True

    async def peek(self, identity: CallerIdentity) -> int:
        """Current usage for today; 0 if the store is unreachable."""
        usage, _ = await self._read(self._key(identity), identity.rate_key)
        return usage

    async def admit(self, identity: CallerIdentity) -> QuotaDecision:
        limit = self.limit_for(identity)
        key = self._key(identity)
        usage, counted = await self._read(key, identity.rate_key)
        if usage >= limit:
            log.info("quota exhausted for %s (%d/%d)", identity.rate_key, usage, limit)
            return QuotaDecision(admitted=False, usage=usage, limit=limit, key=key, counted=counted)
        return QuotaDecision(admitted=True, usage=usage, limit=limit, key=key, counted=counted)

    async def record_consumption(self, identity: CallerIdentity, decision: QuotaDecision) -> None:
        """Write usage+1 for an admitted request. Store failures are swallowed."""
        if not decision.admitted:
            return
        if not decision.counted:
            log.warning("usage for %s was not read; consumption not recorded", identity.rate_key)
            return
        key = decision.key or self._key(identity)
        try:
            await self.store.set(key, str(decision.usage + 1), self.ttl_seconds)
        except QuotaStoreError as e:
            log.warning("quota store unavailable, consumption not recorded: %s", e)
