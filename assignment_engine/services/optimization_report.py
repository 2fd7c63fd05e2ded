"""
Optimization report.

Daily summary of how the engine is doing: who performs best, who is
overloaded, which items could not be assigned, how confident the day's
decisions were, and what the pattern analyzer recommends.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, select

from assignment_engine.models import db
from assignment_engine.models.directory import User
from assignment_engine.models.optimization import (
    LOG_TYPE_ASSIGNMENT,
    LOG_TYPE_BOTTLENECK,
    OptimizationLog,
    OptimizationReport,
)
from assignment_engine.models.work_item import WorkItem
from assignment_engine.services.scheduling_engine import get_engine
from assignment_engine.services.workload import active_workload_counts
from assignment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

TOP_PERFORMER_COUNT = 5


def performer_score(reliability: float, avg_hours: float | None) -> float:
    """Reliability weighted 0.7, speed (1 / (avg + 1)) weighted 0.3."""
    speed = 1 / ((avg_hours or 0.0) + 1)
    return round(reliability * 0.7 + speed * 0.3, 4)


def _top_performers(engine) -> list[dict]:
    ranked = sorted(
        engine.profiles.profiles.values(),
        key=lambda p: (-performer_score(p.reliability, p.avg_completion_hours), p.user_id),
    )[:TOP_PERFORMER_COUNT]
    users = {u.id: u for u in db.session.execute(
        select(User).where(User.id.in_([p.user_id for p in ranked]))
    ).scalars()} if ranked else {}
    return [{
        "user_id": p.user_id,
        "name": users[p.user_id].display_name if p.user_id in users else None,
        "score": performer_score(p.reliability, p.avg_completion_hours),
        "reliability": p.reliability,
        "avg_completion_hours": p.avg_completion_hours,
        "total_items": p.total_items,
    } for p in ranked]


def _overloaded_users(threshold: int) -> list[dict]:
    counts = {uid: n for uid, n in active_workload_counts().items() if n > threshold}
    if not counts:
        return []
    users = db.session.execute(select(User).where(User.id.in_(list(counts)))).scalars()
    return sorted(
        ({"user_id": u.id, "name": u.display_name, "role": u.role, "active_items": counts[u.id]}
         for u in users),
        key=lambda row: (-row["active_items"], row["user_id"]),
    )


def _bottlenecks_since(since: datetime) -> list[dict]:
    stmt = (
        select(OptimizationLog, WorkItem)
        .join(WorkItem, OptimizationLog.work_item_id == WorkItem.id)
        .where(
            OptimizationLog.log_type == LOG_TYPE_BOTTLENECK,
            OptimizationLog.created_at >= since,
            WorkItem.status == "pending",
        )
        .order_by(OptimizationLog.created_at.desc())
    )
    seen, rows = set(), []
    for log, item in db.session.execute(stmt).all():
        if item.id in seen:
            continue
        seen.add(item.id)
        rows.append({"work_item_id": item.id, "title": item.title,
                     "priority": item.priority, "reason": log.reasoning})
    return rows


def _average_confidence(since: datetime) -> tuple[float | None, int]:
    avg, count = db.session.execute(
        select(func.avg(OptimizationLog.confidence), func.count(OptimizationLog.id)).where(
            OptimizationLog.log_type == LOG_TYPE_ASSIGNMENT,
            OptimizationLog.created_at >= since,
        )
    ).one()
    return (round(float(avg), 3) if avg is not None else None), count


def generate_optimization_report(now: datetime | None = None, persist: bool = False) -> dict:
    """Build the report for the 24 hours before ``now``.

    Args:
        now: Report clock; defaults to the current UTC time.
        persist: Store the result as an OptimizationReport row (commits).
    """
    now = now or utcnow()
    since = now - timedelta(days=1)
    engine = get_engine()

    avg_confidence, decisions = _average_confidence(since)
    recommendations = list(engine.patterns.insights)
    overloaded = _overloaded_users(int(current_app.config.get("OVERLOAD_THRESHOLD", 8)))
    if overloaded:
        recommendations.append(
            f"{len(overloaded)} user(s) above the workload threshold; rebalance their queues"
        )

    report = {
        "generated_at": now.isoformat(),
        "period_start": since.isoformat(),
        "top_performers": _top_performers(engine),
        "overloaded_users": overloaded,
        "unassigned_bottlenecks": _bottlenecks_since(since),
        "decisions": decisions,
        "average_confidence": avg_confidence,
        "recommendations": recommendations,
        "predictor": engine.predictor.describe(),
    }

    if persist:
        db.session.add(OptimizationReport(report_date=now.date(), payload=report))
        db.session.commit()
        logger.info("Optimization report stored for %s", now.date())
    return report


def latest_report() -> dict | None:
    row = db.session.execute(
        select(OptimizationReport).order_by(OptimizationReport.id.desc()).limit(1)
    ).scalars().first()
    return row.to_dict() if row else None
