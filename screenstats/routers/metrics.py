# =============================================
# File: screenstats/routers/metrics.py
# Purpose: Expose the in-process aggregator as JSON
# =============================================
from __future__ import annotations
from dataclasses import asdict
import os
import time
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends, Request

from screenstats.utils import slog
from screenstats.utils.logging import logger
from screenstats.utils.metrics import MetricsAggregator

router = APIRouter(tags=["metrics"])


def get_metrics(request: Request) -> MetricsAggregator:
    """The aggregator built at startup lives on app.state."""
    return request.app.state.metrics


def _process_figures() -> Dict[str, Any]:
    proc = psutil.Process(os.getpid())
    mem = proc.memory_info()
    return {
        "memory": {"rss": mem.rss, "vms": mem.vms},
        "process_uptime_ms": int((time.time() - proc.create_time()) * 1000),
    }


@router.get("/metrics")
def get_overall(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, Any]:
    """Return the full in-process report, with host memory merged into `system`."""
    report = metrics.snapshot_overall()
    report["system"].update(_process_figures())
    return report


@router.get("/metrics/api")
def get_api_usage(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, Any]:
    return {name: asdict(u) for name, u in metrics.snapshot_usage().items()}


@router.get("/metrics/search")
def get_search(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, Any]:
    return asdict(metrics.snapshot_search())


@router.get("/metrics/users")
def get_users(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, Any]:
    return asdict(metrics.snapshot_requests())


@router.get("/metrics/system")
def get_system(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, Any]:
    body = asdict(metrics.snapshot_system())
    body["cache_hit_rate"] = metrics.cache_hit_rate()
    body.update(_process_figures())
    return body


@router.post("/metrics/reset")
def reset_metrics(metrics: MetricsAggregator = Depends(get_metrics)) -> Dict[str, str]:
    metrics.reset()
    logger.info("metrics reset")
    slog.log_event("metrics.reset")
    return {"status": "reset"}
