# =============================================
# File: screenstats/utils/instrument.py
# Purpose: Explicit timing/outcome wrappers that feed MetricsAggregator
# =============================================
from __future__ import annotations
import time
from contextlib import contextmanager
from typing import Any, Callable, TypeVar

from screenstats.utils.metrics import MetricsAggregator

T = TypeVar("T")

AUTH_PREFIX = "/auth/"
COLLABORATION_PREFIX = "/watch-together/"


@contextmanager
def timer():
    t0 = time.perf_counter()
    yield lambda: int((time.perf_counter() - t0) * 1000)


def instrumented_call(
    metrics: MetricsAggregator,
    service: str,
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Run ``fn`` and record it as one call to the external ``service``.
    Exceptions are recorded as failures and re-raised unchanged.
    """
    with timer() as elapsed:
        try:
            result = fn(*args, **kwargs)
        except Exception:
            metrics.record_external_call(service, elapsed(), False)
            raise
    metrics.record_external_call(service, elapsed(), True)
    return result


def _result_count(result: Any) -> int:
    if isinstance(result, dict):
        items = result.get("results")
        if isinstance(items, list):
            return len(items)
    return 0


def instrumented_search(
    metrics: MetricsAggregator,
    kind: str,
    query: str,
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Run a search callable and record it under ``kind``.
    The result count is len(result["results"]); anything else counts as 0.
    """
    try:
        result = fn(*args, **kwargs)
    except Exception:
        metrics.record_search(kind, query, 0, False)
        raise
    metrics.record_search(kind, query, _result_count(result), True)
    return result


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 400


def classify_request(
    metrics: MetricsAggregator,
    endpoint_id: str,
    status_code: int,
    response_time_ms: float,
) -> bool:
    """Record one completed HTTP request; returns the success flag used."""
    ok = is_success_status(status_code)
    metrics.record_request(endpoint_id, ok, response_time_ms)
    if endpoint_id.startswith(AUTH_PREFIX):
        metrics.record_auth_request(ok)
    if endpoint_id.startswith(COLLABORATION_PREFIX):
        metrics.record_collaboration_request(ok)
    return ok
