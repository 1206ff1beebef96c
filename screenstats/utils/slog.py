# =============================================
# File: screenstats/utils/slog.py
# Purpose: JSON-line request/event logs on the "screenstats" logger
# =============================================
from __future__ import annotations
import hashlib
import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

from screenstats.utils.instrument import AUTH_PREFIX, COLLABORATION_PREFIX

_LOGGER_NAME = "screenstats"


def _build_logger() -> logging.Logger:
    log = logging.getLogger(_LOGGER_NAME)
    if not log.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        log.setLevel(getattr(logging, level, logging.INFO))
        handler = logging.StreamHandler()
        # records are pre-serialized JSON
        handler.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(handler)
        log.propagate = True  # pytest caplog
    return log


_logger = _build_logger()


def qhash(text: str) -> str:
    """10-char digest of a normalized search query; raw queries are never logged."""
    norm = " ".join((text or "").strip().lower().split())
    return hashlib.sha256(norm.encode("utf-8")).hexdigest()[:10]


def new_request_id() -> str:
    return uuid.uuid4().hex


def request_category(endpoint: str) -> Optional[str]:
    if endpoint.startswith(AUTH_PREFIX):
        return "auth"
    if endpoint.startswith(COLLABORATION_PREFIX):
        return "collaboration"
    return None


def _emit(level: int, payload: Dict[str, Any]) -> None:
    _logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    _emit(level, {"event": event, **fields})


def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    endpoint: str,
    status: int,
    ok: bool,
    latency_ms: int,
    client_ip: str | None,
    ctx: Dict[str, Any] | None = None,
) -> None:
    """
    One `request.completed` line per request, mirroring what the aggregator
    recorded for it (endpoint id, success flag, category). Failed requests
    go out at WARNING.
    """
    payload: Dict[str, Any] = {
        "event": "request.completed",
        "request_id": request_id,
        "method": method,
        "path": path,
        "endpoint": endpoint,
        "category": request_category(endpoint),
        "status": status,
        "ok": ok,
        "latency_ms": latency_ms,
        "client_ip": client_ip or "",
    }
    if ctx:
        payload.update(ctx)
    _emit(logging.INFO if ok else logging.WARNING, payload)
