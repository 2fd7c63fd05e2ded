"""
Compliance Assignment Engine
Scheduled Jobs.

Concrete job implementations run by the scheduler loop.

Jobs:
    - assignment_optimizer: assign the pending queue (every 5 minutes)
    - sla_recompute: refresh every open SLA record (every 5 minutes)
    - engine_rebuild: reload history, profiles, patterns, predictor (daily)
    - optimization_report: store the daily optimization report (daily)
"""

from __future__ import annotations

import logging
from typing import Any

from assignment_engine.services.assignment_optimizer import optimize_scheduling
from assignment_engine.services.optimization_report import generate_optimization_report
from assignment_engine.services.scheduler_service import register_job
from assignment_engine.services.scheduling_engine import rebuild_engine
from assignment_engine.services.sla_tracker import recompute_all_sla

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Assignment optimizer
# ═══════════════════════════════════════════════════════════════════════════

@register_job("assignment_optimizer", interval_minutes=5)
def run_assignment_optimizer(app) -> dict[str, Any]:
    """Assign pending and stale-assigned work items to the best candidates."""
    summary = optimize_scheduling()
    return {
        "status": summary["status"],
        "batch_id": summary.get("batch_id"),
        "assigned": len(summary.get("assigned", [])),
        "bottlenecks": len(summary.get("bottlenecks", [])),
        "failed": len(summary.get("failed", [])),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: SLA recompute
# ═══════════════════════════════════════════════════════════════════════════

@register_job("sla_recompute", interval_minutes=5)
def run_sla_recompute(app) -> dict[str, Any]:
    """Recompute status and compliance of every open SLA record."""
    return recompute_all_sla()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Engine rebuild
# ═══════════════════════════════════════════════════════════════════════════

@register_job("engine_rebuild", interval_minutes=1440)
def run_engine_rebuild(app) -> dict[str, Any]:
    """Rebuild performance profiles, patterns and the completion-time predictor."""
    return rebuild_engine()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Optimization report
# ═══════════════════════════════════════════════════════════════════════════

@register_job("optimization_report", interval_minutes=1440)
def run_optimization_report(app) -> dict[str, Any]:
    """Store the daily optimization report."""
    report = generate_optimization_report(persist=True)
    return {
        "top_performers": len(report["top_performers"]),
        "overloaded_users": len(report["overloaded_users"]),
        "unassigned_bottlenecks": len(report["unassigned_bottlenecks"]),
        "average_confidence": report["average_confidence"],
    }
