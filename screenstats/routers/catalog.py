# =============================================
# File: screenstats/routers/catalog.py
# Purpose: Movie / TV / multi search endpoints (cached, instrumented)
# =============================================
from __future__ import annotations
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from screenstats.services.catalog import CatalogClient, CatalogUnavailable
from screenstats.utils import rcache, slog
from screenstats.utils.instrument import instrumented_search
from screenstats.utils.metrics import MetricsAggregator
from screenstats.routers.metrics import get_metrics

router = APIRouter(tags=["catalog"])


class SearchResponse(BaseModel):
    """
    - query: the query as received (trimmed).
    - results: provider result items, passed through.
    - cached: True when served from the response cache.
    """
    query: str
    results: List[Dict[str, Any]]
    cached: bool


def get_catalog(request: Request) -> CatalogClient:
    return request.app.state.catalog


def get_cache(request: Request) -> rcache.ResponseCache:
    return request.app.state.cache


def _search(
    kind: str,
    q: str,
    request: Request,
    metrics: MetricsAggregator,
    catalog: CatalogClient,
    cache: rcache.ResponseCache,
) -> SearchResponse:
    q = q.strip()
    if not q:
        raise HTTPException(status_code=422, detail="q must not be empty")

    request.state.log_context = {"search_kind": kind, "qhash": slog.qhash(q), "cache_hit": False}

    key = rcache.make_key(kind, q)
    cached = cache.get(key)
    if cached is not None:
        request.state.log_context["cache_hit"] = True
        results = cached.get("results") or []
        # a cached answer is still a completed search
        metrics.record_search(kind, q, len(results), True)
        return SearchResponse(query=q, results=results, cached=True)

    try:
        payload = instrumented_search(metrics, kind, q, catalog.search, kind, q)
    except CatalogUnavailable:
        raise HTTPException(status_code=502, detail="Metadata provider unavailable")

    results = payload.get("results") if isinstance(payload, dict) else None
    results = results if isinstance(results, list) else []
    cache.set(key, {"results": results})
    return SearchResponse(query=q, results=results, cached=False)


@router.get("/movies/search", response_model=SearchResponse)
def search_movies(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200),
    metrics: MetricsAggregator = Depends(get_metrics),
    catalog: CatalogClient = Depends(get_catalog),
    cache: rcache.ResponseCache = Depends(get_cache),
) -> SearchResponse:
    return _search("movie", q, request, metrics, catalog, cache)


@router.get("/tv/search", response_model=SearchResponse)
def search_tv(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200),
    metrics: MetricsAggregator = Depends(get_metrics),
    catalog: CatalogClient = Depends(get_catalog),
    cache: rcache.ResponseCache = Depends(get_cache),
) -> SearchResponse:
    return _search("tv", q, request, metrics, catalog, cache)


@router.get("/search/multi", response_model=SearchResponse)
def search_multi(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200),
    metrics: MetricsAggregator = Depends(get_metrics),
    catalog: CatalogClient = Depends(get_catalog),
    cache: rcache.ResponseCache = Depends(get_cache),
) -> SearchResponse:
    return _search("multi", q, request, metrics, catalog, cache)
