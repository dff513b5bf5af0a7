"""
Request id and timing hooks.

``g.request_id`` is taken from the caller's X-Request-ID (or generated) before
the view runs; lifecycle calls store it on every ledger entry. After the view,
the id and the elapsed time are echoed as X-Request-ID / X-Request-Duration-Ms.
Slow calls and 5xx answers are logged; health checks are never logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

_UNLOGGED_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})


def _log_level(status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):

    @app.before_request
    def _assign_request_id():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path not in _UNLOGGED_PATHS:
            logger.log(
                _log_level(response.status_code, elapsed_ms),
                "%s %s -> %d in %.0fms (actor=%s)",
                request.method, request.path, response.status_code, elapsed_ms,
                request.headers.get("X-Actor-ID", "-"),
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed_ms,
                    "remote_addr": request.remote_addr,
                    "fpo_id": (request.view_args or {}).get("fpo_id"),
                },
            )
        return response
