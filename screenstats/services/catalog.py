# =============================================
# File: screenstats/services/catalog.py
# Purpose: Metadata provider client (TMDB-compatible search API), instrumented per call
# =============================================
from __future__ import annotations
import os
from typing import Any, Dict, Optional

import requests

from screenstats.utils.instrument import instrumented_call
from screenstats.utils.logging import logger
from screenstats.utils.metrics import MetricsAggregator

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
DEFAULT_SERVICE = "primary-metadata-provider"

# search kind -> provider path
SEARCH_PATHS: Dict[str, str] = {
    "movie": "/search/movie",
    "tv": "/search/tv",
    "multi": "/search/multi",
}


class CatalogUnavailable(RuntimeError):
    """The metadata provider failed or answered with a non-2xx status."""


class CatalogClient:
    """
    Thin client over the provider's search endpoints. Every HTTP round-trip
    goes through instrumented_call, so usage/latency/errors land on the
    aggregator under ``service``.
    """

    def __init__(
        self,
        metrics: MetricsAggregator,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        service: str = DEFAULT_SERVICE,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._metrics = metrics
        self._base_url = (base_url or os.getenv("CATALOG_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self._api_key = api_key if api_key is not None else os.getenv("CATALOG_API_KEY", "")
        self._service = service
        self._timeout = timeout if timeout is not None else float(os.getenv("CATALOG_TIMEOUT_SECONDS", "4"))
        self._session = session or requests.Session()

    @property
    def service(self) -> str:
        return self._service

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = dict(params)
        if self._api_key:
            query["api_key"] = self._api_key
        try:
            resp = self._session.get(f"{self._base_url}{path}", params=query, timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("catalog request failed: {} {} ({})", self._service, path, e)
            raise CatalogUnavailable(str(e)) from e

    def search(self, kind: str, query: str, page: int = 1) -> Dict[str, Any]:
        path = SEARCH_PATHS.get(kind)
        if path is None:
            raise ValueError(f"unsupported search kind: {kind}")
        return instrumented_call(
            self._metrics,
            self._service,
            self._get,
            path,
            {"query": query, "page": page},
        )
