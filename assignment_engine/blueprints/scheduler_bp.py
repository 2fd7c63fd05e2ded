"""
Scheduler Blueprint.

Endpoints:
    GET   /api/v1/scheduler/jobs                     list registered jobs
    GET   /api/v1/scheduler/jobs/<name>              one job's status
    POST  /api/v1/scheduler/jobs/<name>/trigger      run a job now
    PATCH /api/v1/scheduler/jobs/<name>/toggle       enable / disable
    POST  /api/v1/scheduler/optimize                 run one optimizer batch
    GET   /api/v1/scheduler/engine                   engine snapshot
    POST  /api/v1/scheduler/engine/rebuild           reload history and models
    GET   /api/v1/scheduler/engine/profiles/<uid>    one user's performance profile
    GET   /api/v1/scheduler/report                   latest optimization report
"""

import logging

from flask import Blueprint, jsonify, request

from assignment_engine.blueprints import register_service_error_handlers
from assignment_engine.core.exceptions import ConflictError, NotFoundError
from assignment_engine.services.assignment_optimizer import BATCH_LOCK_NAME, optimize_scheduling
from assignment_engine.services.optimization_report import (
    generate_optimization_report,
    latest_report,
)
from assignment_engine.services.scheduler_service import SchedulerService
from assignment_engine.services.scheduling_engine import get_engine, rebuild_engine

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler_bp", __name__, url_prefix="/api/v1/scheduler")
register_service_error_handlers(scheduler_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  Jobs
# ═══════════════════════════════════════════════════════════════════════════

@scheduler_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job(job_name):
    status = SchedulerService.get_job_status(job_name)
    if not status:
        return jsonify({"error": f"Job '{job_name}' not found"}), 404
    return jsonify(status)


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error" and "Unknown job" in (result.get("error") or ""):
        return jsonify(result), 404
    return jsonify(result)


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return jsonify({"error": "'enabled' field is required (true/false)"}), 400

    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        return jsonify({"error": f"Job '{job_name}' not found"}), 404
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════════════
#  Optimizer & engine
# ═══════════════════════════════════════════════════════════════════════════

@scheduler_bp.route("/optimize", methods=["POST"])
def optimize():
    """Run one optimizer batch. 409 when another batch holds the lock."""
    summary = optimize_scheduling()
    if summary.get("status") == "skipped":
        raise ConflictError(summary["reason"], details={"lock": BATCH_LOCK_NAME})
    return jsonify(summary)


@scheduler_bp.route("/engine", methods=["GET"])
def engine_snapshot():
    return jsonify(get_engine().describe())


@scheduler_bp.route("/engine/rebuild", methods=["POST"])
def engine_rebuild():
    return jsonify(rebuild_engine())


@scheduler_bp.route("/engine/profiles/<int:user_id>", methods=["GET"])
def user_profile(user_id):
    profile = get_engine().profiles.get(user_id)
    if profile is None:
        raise NotFoundError("Performance profile", user_id)
    return jsonify(profile.to_dict())


@scheduler_bp.route("/report", methods=["GET"])
def report():
    """Latest stored report; ``?fresh=1`` (or an empty store) builds one on the fly."""
    if request.args.get("fresh") not in ("1", "true"):
        stored = latest_report()
        if stored:
            return jsonify(stored)
    return jsonify(generate_optimization_report())
