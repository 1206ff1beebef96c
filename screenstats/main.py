from __future__ import annotations
import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, Request

from screenstats.routers import catalog, metrics
from screenstats.services.catalog import CatalogClient
from screenstats.utils import slog
from screenstats.utils.instrument import classify_request
from screenstats.utils.logging import configure_logging, logger
from screenstats.utils.metrics import MetricsAggregator
from screenstats.utils.rcache import ResponseCache


def _slow_request_ms() -> int:
    """Read at call time so tests/env overrides take effect."""
    return int(os.getenv("SLOW_REQUEST_MS", "1000"))


def _endpoint_id(request: Request) -> str:
    # Matched route template (e.g. /movies/search); raw path when nothing matched
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or str(request.url.path)


def create_app(
    metrics_agg: Optional[MetricsAggregator] = None,
    catalog_client: Optional[CatalogClient] = None,
    cache: Optional[ResponseCache] = None,
) -> FastAPI:
    """
    Build the service. The aggregator is created once here and shared via
    app.state with the routers, the catalog client and the response cache.
    """
    configure_logging()

    agg = metrics_agg if metrics_agg is not None else MetricsAggregator.from_env()

    app = FastAPI(title="screenstats", openapi_url="/openapi.json")
    app.state.metrics = agg
    app.state.catalog = catalog_client if catalog_client is not None else CatalogClient(metrics=agg)
    app.state.cache = cache if cache is not None else ResponseCache(metrics=agg)

    @app.middleware("http")
    async def _metrics_middleware(request, call_next):
        start = time.perf_counter()
        req_id = slog.new_request_id()
        client_ip = request.client.host if request.client else None
        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            endpoint = _endpoint_id(request)
            classify_request(agg, endpoint, 500, latency_ms)
            ctx = getattr(request.state, "log_context", {})
            slog.log_event(
                "request.error",
                level=logging.ERROR,
                request_id=req_id,
                path=str(request.url.path),
                endpoint=endpoint,
                method=request.method,
                latency_ms=latency_ms,
                client_ip=client_ip,
                error=str(e),
                **(ctx or {}),
            )
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        endpoint = _endpoint_id(request)

        # --- metrics wiring ---
        ok = classify_request(agg, endpoint, response.status_code, latency_ms)

        ctx = getattr(request.state, "log_context", {}) or {}
        slog.finalize_request_log(
            request_id=req_id,
            method=request.method,
            path=str(request.url.path),
            endpoint=endpoint,
            status=response.status_code,
            ok=ok,
            latency_ms=latency_ms,
            client_ip=client_ip,
            ctx=ctx,
        )
        if latency_ms > _slow_request_ms():
            logger.warning("Slow request detected: {} {} took {}ms", request.method, endpoint, latency_ms)

        response.headers["X-Request-ID"] = req_id
        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(metrics.router)
    app.include_router(catalog.router)
    return app


app = create_app()
