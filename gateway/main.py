# gateway/main.py
from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import AbstractSet, Any, Dict, Mapping, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients.sources import iter_sources, make_http_client
from .config import (
    APP_TITLE, APP_VERSION, CLIENT_IP_HEADER, CORS_ALLOW_ORIGINS, FREE_DAILY_LIMIT,
    LOG_LEVEL, PRO_API_KEYS, PRO_DAILY_LIMIT, PipelineCaps, QUOTA_TTL_SECONDS, REDIS_SOCKET_TIMEOUT,
    REDIS_URL,
)
from .envelope import (
    from_denial, from_failure, from_parameter_error, from_success, internal_error, unknown_endpoint,
)
from .errors import ParameterError
from .identity import resolve_identity
from .pipelines import Success, build_pipelines, endpoint_catalog, endpoint_paths
from .quota import MemoryQuotaStore, QuotaGate, QuotaStore, RedisQuotaStore

# ------------------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------------------
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    stream=sys.stdout,
)
log = logging.getLogger("gateway.main")

STATUS_PATH = "/api/status"


def _default_store() -> Any:
    if REDIS_URL:
        log.info("quota store: redis")
        return RedisQuotaStore(REDIS_URL, socket_timeout=REDIS_SOCKET_TIMEOUT)
    log.warning("REDIS_URL not set; quota counters are per-process and reset on restart")
    return MemoryQuotaStore()


def create_app(
    *,
    http: Optional[httpx.AsyncClient] = None,
    store: Optional[QuotaStore] = None,
    caps: Optional[Mapping[str, PipelineCaps]] = None,
    standard_limit: int = FREE_DAILY_LIMIT,
    elevated_limit: int = PRO_DAILY_LIMIT,
    pro_keys: AbstractSet[str] = PRO_API_KEYS,
    ip_header: str = CLIENT_IP_HEADER,
    gate_clock: Any = None,
) -> FastAPI:
    """
    Build the gateway app. `http` and `store` are injectable; whichever is
    omitted is created at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = []
        if getattr(app.state, "http", None) is None:
            app.state.http = make_http_client()
            owned.append(app.state.http.aclose)
        if getattr(app.state, "gate", None) is None:
            _install_gate(app, _default_store())
            owned.append(app.state.store.close)
        try:
            yield
        finally:
            for close in owned:
                await close()

    def _install_gate(app: FastAPI, quota_store: Any) -> None:
        kwargs: Dict[str, Any] = {
            "standard_limit": standard_limit,
            "elevated_limit": elevated_limit,
            "ttl_seconds": QUOTA_TTL_SECONDS,
        }
        if gate_clock is not None:
            kwargs["clock"] = gate_clock
        app.state.store = quota_store
        app.state.gate = QuotaGate(quota_store, **kwargs)

    app = FastAPI(title=APP_TITLE, version=APP_VERSION, lifespan=lifespan)
    app.state.http = http
    app.state.gate = None
    if store is not None:
        _install_gate(app, store)
    app.state.pipelines = build_pipelines(caps)

    # CORS (default permissive; tighten in prod with CORS_ALLOW_ORIGINS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    async def _identity(request: Request):
        return await resolve_identity(request, request.app.state.store, pro_keys=pro_keys, ip_header=ip_header)

    # --------------------------------------------------------------------------
    # Discovery / health
    # --------------------------------------------------------------------------
    @app.get("/", include_in_schema=False)
    async def root(request: Request):
        return {
            "ok": True,
            "service": APP_TITLE,
            "version": APP_VERSION,
            "docs": "/docs",
            "status": STATUS_PATH,
            "api": endpoint_catalog(request.app.state.pipelines),
            "upstreams": sorted(s.name for s in iter_sources() if s.base_url),
        }

    @app.get("/healthz")
    async def healthz(request: Request):
        return {"ok": True, "version": APP_VERSION, "store": getattr(request.app.state.store, "kind", "custom")}

    @app.get(STATUS_PATH)
    async def status(request: Request):
        identity = await _identity(request)
        gate: QuotaGate = request.app.state.gate
        usage = await gate.peek(identity)
        limit = gate.limit_for(identity)
        return {
            "ok": True,
            "plan": identity.plan,
            "usage": usage,
            "limit": limit,
            "remaining": max(0, limit - usage),
            "endpoints": endpoint_paths(request.app.state.pipelines),
            "version": APP_VERSION,
        }

    # --------------------------------------------------------------------------
    # Capabilities
    # --------------------------------------------------------------------------
    @app.get("/api/{capability}")
    async def run_capability(capability: str, request: Request) -> JSONResponse:
        pipelines = request.app.state.pipelines
        pipeline = pipelines.get(capability)
        if pipeline is None:
            return unknown_endpoint(endpoint_paths(pipelines) + [STATUS_PATH]).to_response()

        identity = await _identity(request)
        gate: QuotaGate = request.app.state.gate
        decision = await gate.admit(identity)
        if not decision.admitted:
            return from_denial(decision, identity).to_response()

        try:
            query = pipeline.parse(request.query_params)
        except ParameterError as e:
            return from_parameter_error(e).to_response()

        await gate.record_consumption(identity, decision)
        try:
            result = await pipeline.run(request.app.state.http, query)
        except Exception:
            log.exception("%s: unhandled fault", capability)
            return internal_error().to_response()

        envelope = from_success(result) if isinstance(result, Success) else from_failure(result)
        return envelope.to_response()

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log.error("unhandled fault on %s", request.url.path, exc_info=exc)
        return internal_error().to_response()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("gateway.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
