# =============================================
# File: tests/test_catalog.py
# Purpose: Search endpoints: provider calls, caching and what they record
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest
import requests
from fastapi.testclient import TestClient

from screenstats.main import create_app
from screenstats.services.catalog import CatalogClient, CatalogUnavailable
from screenstats.utils.metrics import MetricsAggregator
from screenstats.utils.rcache import ResponseCache


class _FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, payload=None, status=200, exc=None):
        self.payload = payload if payload is not None else {"results": [{"id": 1}, {"id": 2}]}
        self.status = status
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {}), timeout))
        if self.exc is not None:
            raise self.exc
        return _FakeResponse(self.payload, self.status)


def _mount_client(session):
    m = MetricsAggregator()
    catalog = CatalogClient(metrics=m, base_url="http://provider.test/3", api_key="k", timeout=1, session=session)
    cache = ResponseCache(ttl_seconds=300, max_entries=100, metrics=m)
    app = create_app(metrics_agg=m, catalog_client=catalog, cache=cache)
    return TestClient(app), m


def test_client_builds_provider_request():
    session = _FakeSession()
    m = MetricsAggregator()
    client = CatalogClient(metrics=m, base_url="http://provider.test/3/", api_key="secret", timeout=2, session=session)
    out = client.search("tv", "Severance", page=2)
    assert out["results"] == [{"id": 1}, {"id": 2}]
    url, params, timeout = session.calls[0]
    assert url == "http://provider.test/3/search/tv"
    assert params == {"query": "Severance", "page": 2, "api_key": "secret"}
    assert timeout == 2
    assert m.snapshot_usage()["primary-metadata-provider"].requests == 1


def test_client_wraps_upstream_errors():
    m = MetricsAggregator()
    client = CatalogClient(metrics=m, base_url="http://provider.test", session=_FakeSession(status=503),
                           service="streaming-providers")
    with pytest.raises(CatalogUnavailable):
        client.search("movie", "x")
    u = m.snapshot_usage()["streaming-providers"]
    assert (u.requests, u.errors) == (1, 1)

    with pytest.raises(ValueError):
        client.search("anime", "x")


def test_search_then_cached_search():
    session = _FakeSession()
    client, m = _mount_client(session)

    r1 = client.get("/movies/search", params={"q": "Dune"})
    assert r1.status_code == 200
    assert r1.json() == {"query": "Dune", "results": [{"id": 1}, {"id": 2}], "cached": False}

    r2 = client.get("/movies/search", params={"q": "  dune "})
    assert r2.status_code == 200
    assert r2.json()["cached"] is True

    assert len(session.calls) == 1
    s = m.snapshot_search()
    assert s.movie_searches == 2
    assert s.avg_results_count == 1.5  # (0 + 2) / 2, then (1 + 2) / 2
    assert s.popular_queries == ("dune",)
    sysm = m.snapshot_system()
    assert (sysm.cache_hits, sysm.cache_misses) == (1, 1)
    assert m.snapshot_usage()["primary-metadata-provider"].requests == 1
    assert m.popular_endpoints()[0].endpoint == "/movies/search"
    assert m.popular_endpoints()[0].count == 2


def test_injected_empty_cache_is_used():
    m = MetricsAggregator()
    cache = ResponseCache(ttl_seconds=300, max_entries=5, metrics=m)
    catalog = CatalogClient(metrics=m, base_url="http://provider.test/3", session=_FakeSession())
    app = create_app(metrics_agg=m, catalog_client=catalog, cache=cache)
    assert app.state.cache is cache
    assert app.state.catalog is catalog
    assert app.state.metrics is m

    r = TestClient(app).get("/tv/search", params={"q": "Dark"})
    assert r.status_code == 200
    assert len(cache) == 1


def test_repeated_cached_searches_all_count():
    session = _FakeSession()
    client, m = _mount_client(session)
    for _ in range(5):
        assert client.get("/movies/search", params={"q": "Dune"}).status_code == 200
    assert client.get("/movies/search", params={"q": "Heat"}).status_code == 200

    assert len(session.calls) == 2
    s = m.snapshot_search()
    assert s.movie_searches == 6
    assert s.popular_queries == ("dune", "heat")
    assert m.popular_endpoints()[0].count == 6


@pytest.mark.parametrize("path,kind_field", [
    ("/tv/search", "tv_searches"),
    ("/search/multi", "multi_searches"),
])
def test_each_kind_is_counted(path, kind_field):
    client, m = _mount_client(_FakeSession(payload={"page": 1}))
    r = client.get(path, params={"q": "Lost"})
    assert r.status_code == 200
    assert r.json()["results"] == []
    s = m.snapshot_search()
    assert getattr(s, kind_field) == 1
    assert s.avg_results_count == 0


def test_provider_failure_maps_to_502():
    client, m = _mount_client(_FakeSession(exc=requests.ConnectionError("refused")))
    r = client.get("/movies/search", params={"q": "Heat"})
    assert r.status_code == 502

    s = m.snapshot_search()
    assert s.search_errors == 1
    assert s.popular_queries == ("heat",)
    u = m.snapshot_usage()["primary-metadata-provider"]
    assert (u.requests, u.errors) == (1, 1)
    req = m.snapshot_requests()
    assert req.total_requests == 1
    assert req.error_rate == 100


def test_blank_query_rejected():
    client, m = _mount_client(_FakeSession())
    assert client.get("/movies/search", params={"q": "   "}).status_code == 422
    assert client.get("/movies/search").status_code == 422
    assert m.snapshot_search().movie_searches == 0
