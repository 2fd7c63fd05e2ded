"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready   process is up (load balancer probe)
    GET /api/v1/health/live    database round trip, engine cache state and
                               scheduler job outcomes; 503 when the database
                               cannot be reached
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select, text

from assignment_engine.models import db
from assignment_engine.models.scheduling import ScheduledJob
from assignment_engine.services.scheduling_engine import EXTENSION_KEY

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    db.session.execute(text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _engine_check() -> dict:
    # An engine that was never built is healthy; it builds on first use
    engine = current_app.extensions.get(EXTENSION_KEY)
    if engine is None or not engine.is_built:
        return {"status": "not_built"}
    return {
        "status": "ok",
        "built_at": engine.built_at.isoformat(),
        "profiles": len(engine.profiles),
        "predictor": engine.predictor.name,
    }


def _scheduler_check() -> dict:
    failed = db.session.execute(
        select(func.count(ScheduledJob.id)).where(ScheduledJob.last_run_status == "failed")
    ).scalar_one()
    paused = db.session.execute(
        select(func.count(ScheduledJob.id)).where(ScheduledJob.is_enabled.is_(False))
    ).scalar_one()
    return {"status": "warning" if failed else "ok", "failed_jobs": failed, "paused_jobs": paused}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"engine": _engine_check()}
    try:
        checks["database"] = _database_check()
        checks["scheduler"] = _scheduler_check()
        healthy = True
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        healthy = False

    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "testing": current_app.testing,
        "checks": checks,
    }), 200 if healthy else 503
