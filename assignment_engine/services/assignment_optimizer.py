"""
Assignment Optimizer.

Periodic batch that assigns every pending (or stale-assigned) work item to
the best-scoring eligible user, or reports it as a bottleneck.

Flow per batch:
    1. Take the ``assignment-batch`` advisory lock (skip the batch if held).
    2. Load the queue: ``pending`` items, plus ``assigned`` items nobody
       accepted within the grace period. Ordered by priority, then age.
    3. Load eligible users with their active workload (batch-local counters).
    4. Per item: score candidates, pick the best (ties: lower workload, then
       lower user id), predict hours, record the Primary assignment and the
       open SLA record, update the item, log the decision, commit.
    5. Items with no candidate or only zero scores are bottlenecks: left
       untouched, logged, and summarised in one notification.

Each item commits on its own. A failing item is rolled back and skipped; the
rest of the batch continues. Re-running a finished batch is a no-op because
assigned items leave the queue.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from flask import current_app
from sqlalchemy import and_, case, or_, select

from assignment_engine.models import db
from assignment_engine.models.assignment import RELEASED_ASSIGNMENT_STATUSES, Assignment
from assignment_engine.models.directory import User
from assignment_engine.models.optimization import (
    LOG_TYPE_ASSIGNMENT,
    LOG_TYPE_BOTTLENECK,
    OptimizationLog,
)
from assignment_engine.models.work_item import PRIORITY_RANK, WorkItem
from assignment_engine.services import sla_tracker
from assignment_engine.services.assignment_service import get_primary_holder, record_assignment
from assignment_engine.services.notification import NotificationService
from assignment_engine.services.scheduler_service import acquire_lock, release_lock, renew_lock
from assignment_engine.services.scheduling_engine import SchedulingEngine, get_engine
from assignment_engine.services.workload import Candidate, load_eligible_candidates
from assignment_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

BATCH_LOCK_NAME = "assignment-batch"

_PRIORITY_ORDER = case(PRIORITY_RANK, value=WorkItem.priority, else_=len(PRIORITY_RANK) + 1)


def fetch_queue(now: datetime, grace_hours: float) -> list[WorkItem]:
    """Pending items plus stale-assigned ones, most urgent and oldest first."""
    stale_cutoff = now - timedelta(hours=grace_hours)
    stmt = (
        select(WorkItem)
        .where(or_(
            WorkItem.status == "pending",
            and_(
                WorkItem.status == "assigned",
                WorkItem.accepted_at.is_(None),
                WorkItem.assigned_at < stale_cutoff,
            ),
        ))
        .order_by(_PRIORITY_ORDER, WorkItem.created_at.asc(), WorkItem.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def pick_best(engine: SchedulingEngine, item: WorkItem,
              candidates: list[Candidate]) -> tuple[Candidate | None, float]:
    """Highest score wins; ties go to the lower workload, then the lower user id."""
    best, best_key = None, None
    for candidate in candidates:
        score = engine.scorer.score(candidate, item)
        key = (-score, candidate.active_items, candidate.user_id)
        if best_key is None or key < best_key:
            best, best_key = (candidate, score), key
    if best is None:
        return None, 0.0
    return best


def _released_by(item: WorkItem) -> set[int]:
    """Users who rejected or handed over this item; it never goes back to them."""
    stmt = select(Assignment.user_id).where(
        Assignment.work_item_id == item.id,
        Assignment.status.in_(RELEASED_ASSIGNMENT_STATUSES),
    )
    return set(db.session.execute(stmt).scalars())


def _eligible_for(item: WorkItem, pool: dict[int, Candidate], max_active: int,
                  excluded: set[int]) -> list[Candidate]:
    required = set(item.required_roles or [])
    return [
        c for c in pool.values()
        if c.active_items < max_active
        and (not required or c.role in required)
        and c.user_id not in excluded
    ]


def _record_bottleneck(item: WorkItem, reason: str, batch_id: str) -> dict:
    db.session.add(OptimizationLog(
        log_type=LOG_TYPE_BOTTLENECK,
        batch_id=batch_id,
        work_item_id=item.id,
        reasoning=reason,
    ))
    db.session.commit()
    logger.warning("Bottleneck: %s", reason,
                   extra={"work_item_id": item.id, "item_type": item.item_type, "batch_id": batch_id})
    return {"work_item_id": item.id, "item_type": item.item_type, "title": item.title,
            "priority": item.priority, "reason": reason}


def _assign_item(engine: SchedulingEngine, item: WorkItem, pool: dict[int, Candidate],
                 now: datetime, batch_id: str, config) -> tuple[str, dict]:
    stale_holder = get_primary_holder(item.id) if item.status == "assigned" else None
    excluded = _released_by(item)
    if stale_holder is not None:
        excluded.add(stale_holder.user_id)
    eligible = _eligible_for(item, pool, config["MAX_ACTIVE_WORKLOAD"], excluded)
    if not eligible:
        return "bottleneck", _record_bottleneck(item, "No eligible candidates", batch_id)

    candidate, score = pick_best(engine, item, eligible)
    if score <= 0:
        return "bottleneck", _record_bottleneck(item, "No candidate scored above zero", batch_id)

    hours = engine.predictor.predict(item, candidate, at=now)
    confidence = engine.scorer.confidence(candidate, item)
    reasoning = engine.scorer.reasoning(candidate, item)

    if stale_holder is not None:
        stale_holder.status = "Transferred"
        db.session.flush()

    user = db.session.get(User, candidate.user_id)
    record_assignment(
        item, user, "Primary",
        is_auto_assigned=True,
        reason={"rule": "optimizer", "score": score, "batch_id": batch_id,
                "replaced_user_id": stale_holder.user_id if stale_holder else None},
        estimated_hours=hours,
        confidence=confidence,
        now=now,
    )

    responsible = [{"user_id": user.id, "name": user.display_name, "role": user.role,
                    "assignment_type": "Primary"}]
    window = sla_tracker.sla_window_for(
        item, now,
        plan_days=config["PLAN_SLA_DAYS"], task_hours=config["TASK_SLA_HOURS"],
        use_due_date=True,
    )
    record = sla_tracker.open_sla_record(
        item,
        start_time=window.start_time, target_time=window.target_time,
        target_unit=window.unit, target_value=window.value,
        assigned_to_id=user.id, responsible_persons=responsible, now=now,
        at_risk_threshold=config["AT_RISK_THRESHOLD"],
    )

    item.status = "assigned"
    item.assigned_at = now
    item.accepted_at = None
    item.estimated_hours = hours
    item.assignment_confidence = confidence
    item.assignment_reasoning = reasoning
    item.responsible_persons = responsible
    item.sla_start_time = record.start_time
    item.sla_target_time = record.target_time

    db.session.add(OptimizationLog(
        log_type=LOG_TYPE_ASSIGNMENT,
        batch_id=batch_id,
        work_item_id=item.id,
        user_id=user.id,
        score=score,
        confidence=confidence,
        estimated_hours=hours,
        reasoning=reasoning,
    ))
    db.session.commit()

    pool[candidate.user_id] = candidate.with_extra_item()
    logger.info("Assigned to user %s (score %.2f, %.1fh)", user.id, score, hours,
                extra={"work_item_id": item.id, "user_id": user.id, "batch_id": batch_id})
    return "assigned", {
        "work_item_id": item.id,
        "item_type": item.item_type,
        "user_id": user.id,
        "score": score,
        "estimated_hours": hours,
        "confidence": confidence,
        "reasoning": reasoning,
        "replaced_user_id": stale_holder.user_id if stale_holder else None,
    }


def optimize_scheduling(now: datetime | None = None,
                        should_stop: Callable[[], bool] | None = None) -> dict:
    """Run one optimizer batch.

    Args:
        now: Batch clock; defaults to the current UTC time.
        should_stop: Optional callable checked between items; returning True
            ends the batch early (items already processed stay committed).

    Returns:
        Summary dict: status (completed / skipped), batch_id, processed,
        assigned, bottlenecks, failed, interrupted.
    """
    now = now or utcnow()
    config = current_app.config
    batch_id = uuid.uuid4().hex[:12]
    ttl = config["ASSIGNMENT_LOCK_TTL_SECONDS"]

    if not acquire_lock(BATCH_LOCK_NAME, batch_id, ttl, now=now):
        return {"status": "skipped", "reason": "Another assignment batch is running"}

    summary = {
        "status": "completed",
        "batch_id": batch_id,
        "processed": 0,
        "assigned": [],
        "bottlenecks": [],
        "failed": [],
        "interrupted": False,
    }
    try:
        engine = get_engine()
        queue = [item.id for item in fetch_queue(now, config["STALE_ASSIGNMENT_GRACE_HOURS"])]
        pool = {
            c.user_id: c for c in load_eligible_candidates(
                config["OPTIMIZER_ELIGIBLE_ROLES"], config["MAX_ACTIVE_WORKLOAD"],
            )
        }
        logger.info("Optimizer batch: %d queued items, %d candidates", len(queue), len(pool),
                    extra={"batch_id": batch_id})

        for item_id in queue:
            if should_stop is not None and should_stop():
                summary["interrupted"] = True
                logger.info("Optimizer batch interrupted", extra={"batch_id": batch_id})
                break
            # Heartbeat: the lock must outlive the batch however long it runs
            if not renew_lock(BATCH_LOCK_NAME, batch_id, ttl, now=max(as_utc(now), utcnow())):
                summary["interrupted"] = True
                logger.warning("Optimizer batch lost the %s lock; stopping", BATCH_LOCK_NAME,
                               extra={"batch_id": batch_id})
                break
            try:
                item = db.session.get(WorkItem, item_id)
                if item is None:
                    continue
                outcome, entry = _assign_item(engine, item, pool, now, batch_id, config)
            except Exception as exc:
                db.session.rollback()
                logger.exception("Optimizer failed on work item %s", item_id,
                                 extra={"work_item_id": item_id, "batch_id": batch_id})
                summary["failed"].append({"work_item_id": item_id, "error": str(exc)})
                continue
            summary["processed"] += 1
            summary["assigned" if outcome == "assigned" else "bottlenecks"].append(entry)
    finally:
        try:
            release_lock(BATCH_LOCK_NAME, batch_id)
        except Exception:
            db.session.rollback()
            logger.exception("Failed to release %s lock", BATCH_LOCK_NAME)

    if summary["bottlenecks"]:
        NotificationService.notify_safely(
            title=f"{len(summary['bottlenecks'])} work item(s) could not be assigned",
            message="; ".join(f"#{b['work_item_id']} {b['title']}: {b['reason']}"
                              for b in summary["bottlenecks"])[:2000],
            category="bottleneck",
            severity="warning",
            entity_type="batch",
        )

    logger.info("Optimizer batch done: %d assigned, %d bottlenecks, %d failed",
                len(summary["assigned"]), len(summary["bottlenecks"]), len(summary["failed"]),
                extra={"batch_id": batch_id})
    return summary
