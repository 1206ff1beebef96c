# =============================================
# File: screenstats/utils/metrics.py
# Purpose: In-process usage/search/request counters & response-time stats for /metrics
# =============================================
from __future__ import annotations
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import math
import os
import threading
import time
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

DEFAULT_SERVICES: Tuple[str, ...] = (
    "primary-metadata-provider",
    "secondary-metadata-provider",
    "streaming-providers",
)
SEARCH_KINDS: Tuple[str, ...] = ("movie", "tv", "multi")

DEFAULT_WINDOW_SIZE = 1000
DEFAULT_TOP_N = 10


class UnknownServiceError(KeyError):
    """Raised when recording against a service that was not registered."""


class UnknownSearchKindError(ValueError):
    """Raised when a search kind is not one of movie / tv / multi."""


# ---------- Snapshot types (immutable) ----------

@dataclass(frozen=True)
class ServiceUsage:
    requests: int
    errors: int
    avg_response_time_ms: float
    last_used_at_epoch_ms: int


@dataclass(frozen=True)
class EndpointCount:
    endpoint: str
    count: int


@dataclass(frozen=True)
class SearchSnapshot:
    movie_searches: int
    tv_searches: int
    multi_searches: int
    avg_results_count: float
    search_errors: int
    popular_queries: Tuple[str, ...]
    popular_endpoints: Tuple[EndpointCount, ...]


@dataclass(frozen=True)
class RequestSnapshot:
    total_requests: int
    auth_requests: int
    collaboration_requests: int
    error_rate: float


@dataclass(frozen=True)
class SystemSnapshot:
    uptime_ms: int
    cache_hits: int
    cache_misses: int


@dataclass(frozen=True)
class ResponseTimeStats:
    avg: float
    min: float
    max: float
    p95: float
    p99: float


# ---------- Pure helpers ----------

def decayed_average(current: float, sample: float) -> float:
    """
    Blend a new sample into a running figure as (current + sample) / 2.
    Each new sample weighs 50%, the previous one 25%, and so on; this is
    not an arithmetic mean (one sample of 100 from zero yields 50).
    """
    return (current + sample) / 2


def percentage(part: float, whole: float) -> float:
    """part / whole * 100, or 0.0 when whole is zero."""
    if whole <= 0:
        return 0.0
    return (part / whole) * 100


def rank_by_count(table: Dict[str, int], limit: int) -> List[Tuple[str, int]]:
    """
    Keys ordered by descending count. sorted() is stable, so equal counts
    keep the table's insertion order (first seen ranks first).
    """
    ranked = sorted(table.items(), key=lambda kv: kv[1], reverse=True)
    return ranked[:limit]


def response_time_stats(samples: Iterable[float]) -> ResponseTimeStats:
    """Mean / min / max plus nearest-rank p95 and p99 over a copy of the samples."""
    xs = sorted(samples)
    n = len(xs)
    if n == 0:
        return ResponseTimeStats(avg=0, min=0, max=0, p95=0, p99=0)

    lo, hi = xs[0], xs[-1]

    def _nearest_rank(p: float) -> float:
        idx = math.floor(n * p)
        return xs[idx] if idx < n else hi

    mean = sum(xs) / n
    return ResponseTimeStats(
        avg=math.floor(mean + 0.5),  # round half up
        min=lo,
        max=hi,
        p95=_nearest_rank(0.95),
        p99=_nearest_rank(0.99),
    )


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# ---------- Aggregator ----------

class MetricsAggregator:
    """
    Process-wide accumulator for API usage, search activity, request volume
    and cache effectiveness.

    Every record/snapshot/reset call takes the same lock, so concurrent
    request handlers never lose an update and a snapshot never sees a
    half-applied record or a half-done reset. Nothing under the lock does I/O.

    Frequency tables are unbounded unless ``max_tracked_keys`` is given, in
    which case a new key arriving at a full table evicts the least frequent
    entry (earliest seen among ties).
    """

    def __init__(
        self,
        services: Iterable[str] = DEFAULT_SERVICES,
        window_size: int = DEFAULT_WINDOW_SIZE,
        top_n: int = DEFAULT_TOP_N,
        max_tracked_keys: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        if top_n < 0:
            raise ValueError("top_n must be >= 0")
        if max_tracked_keys is not None and max_tracked_keys < 1:
            raise ValueError("max_tracked_keys must be >= 1")
        self._services: Tuple[str, ...] = tuple(services)
        self._window_size = window_size
        self._top_n = top_n
        self._max_tracked_keys = max_tracked_keys
        self._clock = clock
        self._started_at = clock()
        self._lock = threading.Lock()
        self._init_state()

    @classmethod
    def from_env(cls, **overrides: Any) -> "MetricsAggregator":
        """Build an aggregator from METRICS_* environment variables."""
        kwargs: Dict[str, Any] = {
            "window_size": _env_int("METRICS_WINDOW_SIZE", DEFAULT_WINDOW_SIZE),
            "top_n": _env_int("METRICS_TOP_N", DEFAULT_TOP_N),
            "max_tracked_keys": _env_int("METRICS_MAX_TRACKED_KEYS", None),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # caller must hold self._lock (or be __init__)
    def _init_state(self) -> None:
        self._api: Dict[str, Dict[str, float]] = {
            name: {"requests": 0, "errors": 0, "avg_response_time_ms": 0.0, "last_used_at_epoch_ms": 0}
            for name in self._services
        }
        self._search: Dict[str, float] = {
            "movie_searches": 0,
            "tv_searches": 0,
            "multi_searches": 0,
            "avg_results_count": 0.0,
            "search_errors": 0,
        }
        self._users: Dict[str, float] = {
            "total_requests": 0,
            "auth_requests": 0,
            "collaboration_requests": 0,
            "error_rate": 0.0,
        }
        self._response_times: Deque[float] = deque(maxlen=self._window_size)
        self._query_frequency: Dict[str, int] = {}
        self._endpoint_frequency: Dict[str, int] = {}
        self._error_count = 0
        self._cache_hits = 0
        self._cache_misses = 0

    @property
    def services(self) -> Tuple[str, ...]:
        return self._services

    # ---------- Recording ----------

    def record_external_call(self, service: str, response_time_ms: float, succeeded: bool) -> None:
        if service not in self._api:
            raise UnknownServiceError(service)
        now_ms = int(self._clock() * 1000)
        with self._lock:
            usage = self._api[service]
            usage["requests"] += 1
            usage["last_used_at_epoch_ms"] = now_ms
            if succeeded:
                usage["avg_response_time_ms"] = decayed_average(usage["avg_response_time_ms"], response_time_ms)
            else:
                usage["errors"] += 1

    def record_search(self, kind: str, query_text: str, result_count: int, succeeded: bool) -> None:
        if kind not in SEARCH_KINDS:
            raise UnknownSearchKindError(kind)
        query = (query_text or "").lower()
        with self._lock:
            self._search[f"{kind}_searches"] += 1
            self._bump(self._query_frequency, query)
            if succeeded:
                self._search["avg_results_count"] = decayed_average(self._search["avg_results_count"], result_count)
            else:
                self._search["search_errors"] += 1

    def record_request(self, endpoint_id: str, succeeded: bool, response_time_ms: float) -> None:
        with self._lock:
            self._users["total_requests"] += 1
            self._response_times.append(response_time_ms)  # deque drops the oldest
            self._bump(self._endpoint_frequency, endpoint_id)
            if not succeeded:
                self._error_count += 1
            self._refresh_error_rate()

    def record_auth_request(self, succeeded: bool) -> None:
        with self._lock:
            self._users["auth_requests"] += 1
            if not succeeded:
                # total_requests is not incremented here; the rate uses whatever total exists.
                self._error_count += 1
                self._refresh_error_rate()

    def record_collaboration_request(self, succeeded: bool) -> None:
        with self._lock:
            self._users["collaboration_requests"] += 1
            if not succeeded:
                self._error_count += 1
                self._refresh_error_rate()

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._cache_misses += 1

    def _refresh_error_rate(self) -> None:
        self._users["error_rate"] = percentage(self._error_count, self._users["total_requests"])

    def _bump(self, table: Dict[str, int], key: str) -> None:
        if key in table:
            table[key] += 1
            return
        cap = self._max_tracked_keys
        if cap is not None and len(table) >= cap:
            # min() keeps the first minimum in insertion order
            victim = min(table, key=table.__getitem__)
            del table[victim]
        table[key] = 1

    # ---------- Snapshots ----------

    def snapshot_usage(self) -> Dict[str, ServiceUsage]:
        with self._lock:
            return self._usage_locked()

    def snapshot_search(self) -> SearchSnapshot:
        with self._lock:
            return self._search_locked()

    def snapshot_requests(self) -> RequestSnapshot:
        with self._lock:
            return self._requests_locked()

    def snapshot_system(self) -> SystemSnapshot:
        with self._lock:
            return self._system_locked()

    def snapshot_response_times(self) -> ResponseTimeStats:
        with self._lock:
            samples = list(self._response_times)
        return response_time_stats(samples)

    def popular_queries(self) -> List[str]:
        with self._lock:
            return [q for q, _ in rank_by_count(self._query_frequency, self._top_n)]

    def popular_endpoints(self) -> List[EndpointCount]:
        with self._lock:
            return [EndpointCount(e, c) for e, c in rank_by_count(self._endpoint_frequency, self._top_n)]

    def cache_hit_rate(self) -> float:
        with self._lock:
            return percentage(self._cache_hits, self._cache_hits + self._cache_misses)

    def snapshot_overall(self) -> Dict[str, Any]:
        """
        Full report for the status endpoint. All sections are read under one
        lock acquisition; percentile math runs on a copy outside it.
        """
        with self._lock:
            usage = self._usage_locked()
            search = self._search_locked()
            users = self._requests_locked()
            system = self._system_locked()
            samples = list(self._response_times)
            hits, misses = self._cache_hits, self._cache_misses
            now = self._clock()

        search_d = asdict(search)
        search_d["popular_queries"] = list(search.popular_queries)
        search_d["popular_endpoints"] = [asdict(e) for e in search.popular_endpoints]
        return {
            "timestamp": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            "uptime_ms": system.uptime_ms,
            "response_time": asdict(response_time_stats(samples)),
            "api": {name: asdict(u) for name, u in usage.items()},
            "search": search_d,
            "users": asdict(users),
            "system": asdict(system),
            "summary": {
                "total_requests": users.total_requests,
                "error_rate": users.error_rate,
                "cache_hit_rate": percentage(hits, hits + misses),
                "top_endpoints": search_d["popular_endpoints"],
                "top_queries": search_d["popular_queries"],
            },
        }

    def reset(self) -> None:
        """Restore every counter, table and the response-time window to zero/empty."""
        with self._lock:
            self._init_state()

    # ---------- Locked builders ----------

    def _usage_locked(self) -> Dict[str, ServiceUsage]:
        return {
            name: ServiceUsage(
                requests=int(u["requests"]),
                errors=int(u["errors"]),
                avg_response_time_ms=float(u["avg_response_time_ms"]),
                last_used_at_epoch_ms=int(u["last_used_at_epoch_ms"]),
            )
            for name, u in self._api.items()
        }

    def _search_locked(self) -> SearchSnapshot:
        s = self._search
        return SearchSnapshot(
            movie_searches=int(s["movie_searches"]),
            tv_searches=int(s["tv_searches"]),
            multi_searches=int(s["multi_searches"]),
            avg_results_count=float(s["avg_results_count"]),
            search_errors=int(s["search_errors"]),
            popular_queries=tuple(q for q, _ in rank_by_count(self._query_frequency, self._top_n)),
            popular_endpoints=tuple(
                EndpointCount(e, c) for e, c in rank_by_count(self._endpoint_frequency, self._top_n)
            ),
        )

    def _requests_locked(self) -> RequestSnapshot:
        u = self._users
        return RequestSnapshot(
            total_requests=int(u["total_requests"]),
            auth_requests=int(u["auth_requests"]),
            collaboration_requests=int(u["collaboration_requests"]),
            error_rate=float(u["error_rate"]),
        )

    def _system_locked(self) -> SystemSnapshot:
        return SystemSnapshot(
            uptime_ms=int((self._clock() - self._started_at) * 1000),
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
        )
