"""
Request timing middleware.

Every API response carries ``X-Request-ID`` (echoed from the caller when
supplied) and ``X-Response-Time-Ms``. The request log line is tagged with the
engine identifiers found in the URL, so a slow ``/assignments/<id>/complete``
can be traced to the work item and assignment it touched.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probe endpoints hit by load balancers every few seconds
QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready", "/api/v1/health/live"})

# URL parameter -> log field
_VIEW_ARG_FIELDS = {
    "item_id": "work_item_id",
    "plan_id": "work_item_id",
    "task_id": "work_item_id",
    "assignment_id": "assignment_id",
    "user_id": "user_id",
    "job_name": "job_name",
    "item_type": "item_type",
}


def _request_context(response, duration_ms: float) -> dict:
    context = {
        "method": request.method,
        "path": request.path,
        "endpoint": request.endpoint,
        "status": response.status_code,
        "duration_ms": round(duration_ms, 1),
        "request_id": g.get("request_id", ""),
    }
    for arg, field in _VIEW_ARG_FIELDS.items():
        if request.view_args and arg in request.view_args:
            context[field] = request.view_args[arg]
    return context


def _level_for(status: int, duration_ms: float, slow_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms >= slow_ms:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask) -> None:
    """Attach request-id and response-time hooks to ``app``."""
    slow_ms = float(app.config.get("SLOW_REQUEST_MS", 1000))

    @app.before_request
    def _begin():
        g.started_at = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]

    @app.after_request
    def _finish(response):
        started = g.get("started_at")
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.1f}"

        if request.path not in QUIET_PATHS:
            level = _level_for(response.status_code, duration_ms, slow_ms)
            logger.log(level, "%s %s -> %d in %.0fms", request.method, request.path,
                       response.status_code, duration_ms,
                       extra=_request_context(response, duration_ms))
        return response
