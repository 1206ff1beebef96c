# =============================================
# File: tests/test_logging.py
# =============================================
import sys, os, json
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient
from loguru import logger

from screenstats.main import create_app
from screenstats.utils.metrics import MetricsAggregator
from screenstats.utils import slog


class _StubCatalog:
    service = "primary-metadata-provider"

    def search(self, kind, query, page=1):
        return {"results": [{"id": 7}]}


def _mount_client(catalog=None):
    m = MetricsAggregator()
    return TestClient(create_app(metrics_agg=m, catalog_client=catalog or _StubCatalog()))

def _find_json_events(caplog, name: str):
    out = []
    for rec in caplog.records:
        try:
            data = json.loads(rec.message)
        except ValueError:
            continue
        if data.get("event") == name:
            out.append(data)
    return out

def test_structured_log_on_success(caplog):
    caplog.set_level("INFO", logger="screenstats")
    client = _mount_client()

    r = client.get("/health")
    assert r.status_code == 200

    evts = _find_json_events(caplog, "request.completed")
    assert evts
    evt = evts[-1]
    assert evt["path"] == "/health"
    assert evt["endpoint"] == "/health"
    assert evt["status"] == 200
    assert evt["request_id"] == r.headers["X-Request-ID"]
    assert isinstance(evt["latency_ms"], int)

def test_failed_auth_request_logged_as_warning(caplog):
    caplog.set_level("INFO", logger="screenstats")
    client = _mount_client()

    client.get("/auth/login")
    client.get("/watch-together/rooms")
    client.post("/metrics/reset")

    completed = [r for r in caplog.records if '"request.completed"' in r.message]
    by_path = {json.loads(r.message)["path"]: r for r in completed}
    auth = json.loads(by_path["/auth/login"].message)
    assert auth["ok"] is False
    assert auth["category"] == "auth"
    assert by_path["/auth/login"].levelname == "WARNING"
    assert json.loads(by_path["/watch-together/rooms"].message)["category"] == "collaboration"
    reset = json.loads(by_path["/metrics/reset"].message)
    assert reset["ok"] is True
    assert reset["category"] is None
    assert by_path["/metrics/reset"].levelname == "INFO"
    assert _find_json_events(caplog, "metrics.reset")

def test_search_log_hashes_query(caplog):
    caplog.set_level("INFO", logger="screenstats")
    client = _mount_client()

    r = client.get("/movies/search", params={"q": "Blade Runner"})
    assert r.status_code == 200

    evt = _find_json_events(caplog, "request.completed")[-1]
    assert evt["search_kind"] == "movie"
    assert evt["qhash"] == slog.qhash("blade runner")
    assert len(evt["qhash"]) == 10
    assert evt["cache_hit"] is False
    assert "Blade Runner" not in json.dumps(evt)

def test_slow_requests_warn(monkeypatch):
    monkeypatch.setenv("SLOW_REQUEST_MS", "-1")
    messages = []
    sink_id = logger.add(lambda msg: messages.append(str(msg)), level="WARNING")
    try:
        client = _mount_client()
        client.get("/health")
    finally:
        logger.remove(sink_id)
    assert any("Slow request detected: GET /health" in m for m in messages)

def test_log_event_serializes_fields(caplog):
    caplog.set_level("INFO", logger="screenstats")
    slog.log_event("metrics.reset", by="ops", count=3)
    evt = _find_json_events(caplog, "metrics.reset")[-1]
    assert evt == {"event": "metrics.reset", "by": "ops", "count": 3}

def test_unhandled_error_is_recorded(caplog):
    caplog.set_level("INFO", logger="screenstats")

    class _Broken:
        def search(self, kind, query, page=1):
            raise KeyError("bad payload")

    m = MetricsAggregator()
    client = TestClient(create_app(metrics_agg=m, catalog_client=_Broken()), raise_server_exceptions=False)
    r = client.get("/tv/search", params={"q": "Fargo"})
    assert r.status_code == 500

    assert _find_json_events(caplog, "request.error")
    req = m.snapshot_requests()
    assert req.total_requests == 1
    assert req.error_rate == 100
    assert m.snapshot_search().search_errors == 1
