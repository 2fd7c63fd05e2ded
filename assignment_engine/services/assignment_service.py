"""
Assignment records and lifecycle.

Business context:
    An Assignment links one user to one work item. The (item, user) pair is
    unique; re-assigning the same person re-activates their existing row.

    Invariant: a work item has at most one Primary *holder* (a Primary row
    that is not Rejected/Transferred). This is enforced here because SQLite
    cannot express it as a partial index over two conditions. Callers that
    replace a Primary must release the old holder first (transfer or reject).

Lifecycle:
    Assigned    → Accepted | Rejected | Transferred
    Accepted    → In Progress | Rejected | Transferred
    In Progress → Completed | Transferred

Work-item side effects of Primary transitions:
    accept   → item.accepted_at
    start    → item.status = in_progress
    reject   → item back to pending (optimizer picks it up again)
    complete → item completed, SLA record closed
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from assignment_engine.core.exceptions import NotFoundError, ValidationError
from assignment_engine.models import db
from assignment_engine.models.assignment import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ASSIGNMENT_TYPES,
    RELEASED_ASSIGNMENT_STATUSES,
    Assignment,
)
from assignment_engine.models.directory import User
from assignment_engine.models.work_item import ITEM_TYPES, PRIORITIES, WorkItem
from assignment_engine.services import sla_tracker
from assignment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "Assigned": frozenset({"Accepted", "Rejected", "Transferred"}),
    "Accepted": frozenset({"In Progress", "Rejected", "Transferred"}),
    "In Progress": frozenset({"Completed", "Transferred"}),
}


# ═══════════════════════════════════════════════════════════════════════════
#  Work items
# ═══════════════════════════════════════════════════════════════════════════


def get_work_item(item_id: int, item_type: str | None = None) -> WorkItem:
    """Load a work item or raise NotFoundError (also when the type does not match)."""
    item = db.session.get(WorkItem, item_id)
    if item is None or (item_type and item.item_type != item_type):
        raise NotFoundError((item_type or "work item").title(), item_id)
    return item


def create_work_item(data: dict) -> WorkItem:
    """Create a plan or task from validated input and commit it.

    Args:
        data: Dict with item_type, title and optional category, priority,
            organization_id, parent_plan_id, framework_ref, required_roles,
            due_at (datetime), sla_target_days, sla_target_hours, description.

    Raises:
        ValidationError: unknown item_type/priority or a parent that is not a plan.
    """
    item_type = data.get("item_type")
    if item_type not in ITEM_TYPES:
        raise ValidationError("item_type must be 'plan' or 'task'", details={"item_type": item_type})
    priority = data.get("priority") or "medium"
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'", details={"priority": list(PRIORITIES)})

    parent_id = data.get("parent_plan_id")
    if parent_id is not None:
        parent = db.session.get(WorkItem, parent_id)
        if parent is None or parent.item_type != "plan":
            raise ValidationError("parent_plan_id must reference a plan",
                                  details={"parent_plan_id": parent_id})

    item = WorkItem(
        item_type=item_type,
        title=data["title"],
        description=data.get("description") or "",
        category=data.get("category") or "",
        priority=priority,
        organization_id=data.get("organization_id"),
        parent_plan_id=parent_id,
        framework_ref=data.get("framework_ref"),
        required_roles=list(data.get("required_roles") or []),
        due_at=data.get("due_at"),
        sla_target_days=data.get("sla_target_days"),
        sla_target_hours=data.get("sla_target_hours"),
        status="pending",
    )
    db.session.add(item)
    db.session.commit()
    logger.info("Work item created", extra={"item_type": item_type, "work_item_id": item.id})
    return item


def complete_work_item(item_id: int, now: datetime | None = None) -> dict:
    """Mark a work item completed, finish its active assignments and close its SLA."""
    now = now or utcnow()
    item = get_work_item(item_id)
    if item.is_terminal:
        raise ValidationError(f"Work item is already {item.status}", details={"status": item.status})

    item.status = "completed"
    item.completed_at = now
    for a in item.assignments.filter(Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES)):
        a.status = "Completed"
        a.completed_at = now
    sla = sla_tracker.mark_item_completed(item.id, completed_at=now, commit=False)
    db.session.commit()
    logger.info("Work item completed", extra={"item_type": item.item_type, "work_item_id": item.id})
    return {"work_item": item.to_dict(), "sla": sla}


def cancel_work_item(item_id: int, now: datetime | None = None) -> dict:
    """Cancel a work item and its open SLA record. Assignments are kept for audit."""
    now = now or utcnow()
    item = get_work_item(item_id)
    if item.is_terminal:
        raise ValidationError(f"Work item is already {item.status}", details={"status": item.status})

    item.status = "cancelled"
    sla = sla_tracker.cancel_item(item.id, now=now, commit=False)
    db.session.commit()
    logger.info("Work item cancelled", extra={"item_type": item.item_type, "work_item_id": item.id})
    return {"work_item": item.to_dict(), "sla": sla}


# ═══════════════════════════════════════════════════════════════════════════
#  Assignment rows
# ═══════════════════════════════════════════════════════════════════════════


def get_primary_holder(work_item_id: int) -> Assignment | None:
    stmt = select(Assignment).where(
        Assignment.work_item_id == work_item_id,
        Assignment.assignment_type == "Primary",
        Assignment.status.notin_(RELEASED_ASSIGNMENT_STATUSES),
    )
    return db.session.execute(stmt).scalars().first()


def list_assignments(work_item_id: int) -> list[dict]:
    stmt = (
        select(Assignment)
        .where(Assignment.work_item_id == work_item_id)
        .order_by(Assignment.id)
    )
    return [a.to_dict() for a in db.session.execute(stmt).scalars()]


def record_assignment(
    item: WorkItem,
    user: User,
    assignment_type: str = "Primary",
    *,
    is_auto_assigned: bool = True,
    reason: dict | None = None,
    estimated_hours: float | None = None,
    confidence: float | None = None,
    now: datetime | None = None,
) -> Assignment:
    """Create (or re-activate) the assignment of ``user`` to ``item``.

    Does not commit; the caller owns the transaction.

    Raises:
        ValidationError: unknown type, or a different user already holds Primary.
    """
    if assignment_type not in ASSIGNMENT_TYPES:
        raise ValidationError(f"Invalid assignment_type '{assignment_type}'",
                              details={"assignment_type": sorted(ASSIGNMENT_TYPES)})
    now = now or utcnow()

    if assignment_type == "Primary":
        holder = get_primary_holder(item.id)
        if holder is not None and holder.user_id != user.id:
            raise ValidationError(
                "Work item already has a Primary assignee",
                details={"work_item_id": item.id, "holder_user_id": holder.user_id},
            )

    existing = db.session.execute(
        select(Assignment).where(Assignment.work_item_id == item.id, Assignment.user_id == user.id)
    ).scalars().first()

    if existing is None:
        assignment = Assignment(work_item_id=item.id, user_id=user.id)
        try:
            with db.session.begin_nested():
                _fill(assignment, user, assignment_type, is_auto_assigned, reason,
                      estimated_hours, confidence, now)
                db.session.add(assignment)
        except IntegrityError:
            # Another writer created the pair first; treat as already handled
            logger.info("Assignment already recorded by a concurrent writer",
                        extra={"work_item_id": item.id, "user_id": user.id})
            existing = db.session.execute(
                select(Assignment).where(Assignment.work_item_id == item.id,
                                         Assignment.user_id == user.id)
            ).scalars().first()
            if existing is None:
                raise
            return existing
        return assignment

    _fill(existing, user, assignment_type, is_auto_assigned, reason, estimated_hours, confidence, now)
    existing.accepted_at = None
    existing.started_at = None
    existing.completed_at = None
    return existing


def _fill(assignment, user, assignment_type, is_auto_assigned, reason, estimated_hours, confidence, now):
    assignment.user_role = user.role or ""
    assignment.assignment_type = assignment_type
    assignment.status = "Assigned"
    assignment.is_auto_assigned = is_auto_assigned
    assignment.assignment_reason = reason
    assignment.estimated_hours = estimated_hours
    assignment.confidence = confidence
    assignment.assigned_at = now


# ═══════════════════════════════════════════════════════════════════════════
#  Transitions
# ═══════════════════════════════════════════════════════════════════════════


def _load(assignment_id: int) -> Assignment:
    assignment = db.session.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment", assignment_id)
    return assignment


def _check_transition(assignment: Assignment, target: str) -> None:
    allowed = ALLOWED_TRANSITIONS.get(assignment.status, frozenset())
    if target not in allowed:
        raise ValidationError(
            f"Cannot move assignment from {assignment.status} to {target}",
            details={"status": assignment.status, "allowed": sorted(allowed)},
        )
    if assignment.work_item.is_terminal:
        raise ValidationError(f"Work item is {assignment.work_item.status}",
                              details={"work_item_id": assignment.work_item_id})


def accept_assignment(assignment_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    assignment = _load(assignment_id)
    _check_transition(assignment, "Accepted")
    assignment.status = "Accepted"
    assignment.accepted_at = now
    if assignment.assignment_type == "Primary":
        assignment.work_item.accepted_at = now
    db.session.commit()
    return assignment.to_dict()


def start_assignment(assignment_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    assignment = _load(assignment_id)
    _check_transition(assignment, "In Progress")
    assignment.status = "In Progress"
    assignment.started_at = now
    if assignment.assignment_type == "Primary":
        assignment.work_item.status = "in_progress"
    db.session.commit()
    return assignment.to_dict()


def complete_assignment(assignment_id: int, now: datetime | None = None) -> dict:
    """Complete an assignment. Completing the Primary completes the work item."""
    now = now or utcnow()
    assignment = _load(assignment_id)
    _check_transition(assignment, "Completed")
    if assignment.assignment_type == "Primary":
        complete_work_item(assignment.work_item_id, now=now)
        db.session.refresh(assignment)
        return assignment.to_dict()
    assignment.status = "Completed"
    assignment.completed_at = now
    db.session.commit()
    return assignment.to_dict()


def reject_assignment(assignment_id: int, reason: str | None = None,
                      now: datetime | None = None) -> dict:
    """Reject an assignment. A rejected Primary sends the item back to the queue."""
    now = now or utcnow()
    assignment = _load(assignment_id)
    _check_transition(assignment, "Rejected")
    assignment.status = "Rejected"
    if reason:
        assignment.assignment_reason = {**(assignment.assignment_reason or {}), "rejection": reason}
    if assignment.assignment_type == "Primary":
        item = assignment.work_item
        item.status = "pending"
        item.assigned_at = None
        item.accepted_at = None
    db.session.commit()
    logger.info("Assignment rejected",
                extra={"work_item_id": assignment.work_item_id, "user_id": assignment.user_id})
    return assignment.to_dict()


def transfer_assignment(assignment_id: int, to_user_id: int, now: datetime | None = None) -> dict:
    """Hand an assignment over to another user, keeping its type.

    Returns:
        Dict with ``from`` (the released row) and ``to`` (the new holder row).
    """
    now = now or utcnow()
    assignment = _load(assignment_id)
    _check_transition(assignment, "Transferred")
    target = db.session.get(User, to_user_id)
    if target is None or not target.is_active:
        raise NotFoundError("User", to_user_id)
    if target.id == assignment.user_id:
        raise ValidationError("Cannot transfer an assignment to its current holder",
                              details={"to_user_id": to_user_id})

    assignment.status = "Transferred"
    db.session.flush()
    new_row = record_assignment(
        assignment.work_item, target, assignment.assignment_type,
        is_auto_assigned=False,
        reason={"rule": "transfer", "from_user_id": assignment.user_id},
        estimated_hours=assignment.estimated_hours,
        now=now,
    )
    if assignment.assignment_type == "Primary":
        item = assignment.work_item
        item.assigned_at = now
        item.accepted_at = None
        if item.status == "in_progress":
            item.status = "assigned"
        record = sla_tracker.get_open_record(item.item_type, item.id)
        if record is not None:
            record.assigned_to_id = target.id
    db.session.commit()
    logger.info("Assignment transferred to user %s", target.id,
                extra={"work_item_id": assignment.work_item_id, "user_id": assignment.user_id})
    return {"from": assignment.to_dict(), "to": new_row.to_dict()}
