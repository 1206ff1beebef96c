# =============================================
# File: screenstats/utils/rcache.py
# Purpose: In-process TTL + LRU cache for catalog responses (reports hits/misses)
# =============================================
from __future__ import annotations
import os
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from screenstats.utils.metrics import MetricsAggregator


def _normalize(text: str) -> str:
    return " ".join((text or "").strip().lower().split())


def make_key(*parts: Any) -> str:
    return ":".join(_normalize(str(p)) for p in parts)


class ResponseCache:
    """
    Each get() counts as one cache lookup on the attached aggregator:
    a live entry is a hit, a missing or expired one is a miss.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
        metrics: Optional[MetricsAggregator] = None,
    ) -> None:
        # read env at construction so tests/env overrides take effect
        self._ttl = ttl_seconds if ttl_seconds is not None else int(os.getenv("CACHE_TTL_SECONDS", "600"))
        self._max = max_entries if max_entries is not None else int(os.getenv("CACHE_MAX_ENTRIES", "1000"))
        self._metrics = metrics
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._store: "OrderedDict[str, Tuple[float, Dict[str, Any]]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._store)

    def _now(self) -> float:
        return time.time()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = self._now()
        with self._lock:
            item = self._store.get(key)
            if item is not None and item[0] < now:
                self._store.pop(key, None)
                item = None
            if item is not None:
                # LRU touch: move to end
                self._store.move_to_end(key, last=True)
        if self._metrics is not None:
            if item is None:
                self._metrics.record_cache_miss()
            else:
                self._metrics.record_cache_hit()
        return item[1] if item is not None else None

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        exp = self._now() + (ttl if ttl is not None else self._ttl)
        with self._lock:
            self._store[key] = (exp, value)
            self._store.move_to_end(key, last=True)
            # enforce size
            while len(self._store) > self._max:
                self._store.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
